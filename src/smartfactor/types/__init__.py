"""
Types package for smart factor data structures.
"""
from .key import Key
from .enums import LinearizationMode, FailureKind
from .noise import NoiseModel, IsotropicNoise, DiagonalNoise, GaussianNoise
from .variables import Pose3D, Calibration
from .measurements import PixelMeasurement, SfmTrack

__all__ = [
    "Key",
    "LinearizationMode",
    "FailureKind",
    "NoiseModel",
    "IsotropicNoise",
    "DiagonalNoise",
    "GaussianNoise",
    "Pose3D",
    "Calibration",
    "PixelMeasurement",
    "SfmTrack",
]
