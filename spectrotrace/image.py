from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import numpy as np
from numpy.typing import NDArray
from pydantic import BaseModel, ConfigDict, model_validator

from .errors import InvalidInputError

FloatArray = NDArray[np.float32]

_LOGGER = logging.getLogger("spectrotrace.image")


def coerce_grayscale(data: NDArray[Any] | list[float]) -> FloatArray:
    """Flatten to float32 in [0, 1]; uint8 buffers are rescaled from 0..255."""

    array = np.asarray(data)
    if array.dtype == np.uint8:
        return (array.astype(np.float32) / 255.0).reshape(-1)
    return array.astype(np.float32, copy=False).reshape(-1)


class GrayscaleImage(BaseModel):
    """Row-major luminance buffer produced by the preprocessing stage."""

    width: int
    height: int
    pixels: FloatArray

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        arbitrary_types_allowed=True,
    )

    @model_validator(mode="after")
    def _check_shape(self) -> "GrayscaleImage":
        if self.width <= 0 or self.height <= 0:
            raise InvalidInputError(
                f"Image dimensions must be positive, got {self.width}x{self.height}"
            )
        if self.pixels.size != self.width * self.height:
            raise InvalidInputError(
                f"Data size mismatch: expected {self.width * self.height}, got {self.pixels.size}"
            )
        return self

    @classmethod
    def from_buffer(
        cls,
        data: NDArray[Any] | list[float],
        width: int,
        height: int,
    ) -> "GrayscaleImage":
        return cls(width=width, height=height, pixels=coerce_grayscale(data))

    @classmethod
    def from_array(cls, array: NDArray[Any]) -> "GrayscaleImage":
        grid = np.asarray(array)
        if grid.ndim != 2:
            raise InvalidInputError(f"Expected a 2-D grayscale array, got shape {grid.shape}")
        height, width = grid.shape
        return cls.from_buffer(grid, width, height)

    def as_grid(self) -> FloatArray:
        return self.pixels.reshape(self.height, self.width)


def load_npy(path: str | Path) -> GrayscaleImage:
    """Load a 2-D grayscale array saved with `numpy.save`."""

    target = Path(path)
    try:
        array = np.load(target, allow_pickle=False)
    except (OSError, ValueError) as exc:
        raise InvalidInputError(f"Cannot read grayscale array from {target}: {exc}") from exc
    image = GrayscaleImage.from_array(array)
    _LOGGER.debug("Loaded %sx%s grayscale image from %s", image.width, image.height, target)
    return image
