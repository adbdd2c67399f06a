"""
Measurement types for the smart factors.
"""
from attrs import define, field, validators
from typing import List, Optional, Sequence, Tuple
import numpy as np
from numpy import ndarray

from .key import Key
from .noise import NoiseModel
from ..utils.conversions import to_float_array
from ..utils.validation import array_shape_validator, finite_validator


@define(eq=False)
class PixelMeasurement:
    """
    A 2D observation of the landmark by the camera identified by `key`.
    """

    key: Key = field(
        validator=validators.instance_of(Key),
        metadata={"description": "The key of the observing camera"},
    )
    pixel: ndarray = field(
        converter=to_float_array,
        validator=[array_shape_validator((2,)), finite_validator()],
        metadata={"description": "The measured pixel (u, v)"},
    )
    noise: NoiseModel = field(
        validator=validators.instance_of(NoiseModel),
        metadata={"description": "Noise model of the pixel measurement"},
    )

    def __attrs_post_init__(self):
        if self.noise.dim != 2:
            raise ValueError(
                f"Pixel measurement noise must be 2-dimensional, got {self.noise.dim} for {self.key}"
            )

    def __repr__(self) -> str:
        return f"Pixel({self.key}, {self.pixel.tolist()})"

    def equals(self, other: "PixelMeasurement", tol: float = 1e-9) -> bool:
        return (
            self.key == other.key
            and bool(np.allclose(self.pixel, other.pixel, atol=tol))
            and self.noise.equals(other.noise, tol)
        )


def _to_track_entries(entries) -> List[Tuple[Key, ndarray]]:
    converted = []
    for key, pixel in entries:
        if not isinstance(key, Key):
            key = Key(key)
        pixel = to_float_array(pixel).reshape(-1)
        if pixel.shape != (2,):
            raise ValueError(f"Track pixel for {key} must have 2 entries, got {pixel.shape}")
        converted.append((key, pixel))
    return converted


@define(eq=False)
class SfmTrack:
    """
    A collection of cameras observing a single landmark, as read from an SfM dataset.
    """

    measurements: List[Tuple[Key, ndarray]] = field(
        factory=list,
        converter=_to_track_entries,
        metadata={"description": "The (camera key, pixel) pairs, in observation order"},
    )
    point: Optional[ndarray] = field(
        default=None,
        converter=lambda p: None if p is None else to_float_array(p),
        validator=validators.optional(array_shape_validator((3,))),
        metadata={"description": "Landmark position estimate (optional)"},
    )

    def __len__(self) -> int:
        return len(self.measurements)

    def add_measurement(self, key: Key, pixel: Sequence[float]) -> None:
        self.measurements.extend(_to_track_entries([(key, pixel)]))

    @property
    def number_measurements(self) -> int:
        return len(self.measurements)

    @property
    def keys(self) -> List[Key]:
        return [key for key, _ in self.measurements]

    @property
    def pixels(self) -> List[ndarray]:
        return [pixel for _, pixel in self.measurements]
