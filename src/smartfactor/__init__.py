"""smartfactor package init.

Expose the smart factors, their linearized outputs and configuration at
package level for convenient imports.
"""
from .camera import PinholeCamera
from .config import LinearizationParams, SmartFactorConfig, load_config, make_factor
from .errors import CheiralityError, DegenerateReductionError, LinearizationError
from .factors import (
    ImplicitSchurFactor,
    JacobianFactorQ,
    JacobianFactorSVD,
    RegularHessianFactor,
)
from .smart_factor import (
    JacobianBlocks,
    LinearizationResult,
    SmartCameraFactor,
    SmartFactor,
    SmartPoseFactor,
)
from .types import (
    Calibration,
    FailureKind,
    Key,
    LinearizationMode,
    Pose3D,
)
from .values import CameraValues

__all__ = [
    "PinholeCamera",
    "LinearizationParams",
    "SmartFactorConfig",
    "load_config",
    "make_factor",
    "CheiralityError",
    "DegenerateReductionError",
    "LinearizationError",
    "ImplicitSchurFactor",
    "JacobianFactorQ",
    "JacobianFactorSVD",
    "RegularHessianFactor",
    "JacobianBlocks",
    "LinearizationResult",
    "SmartCameraFactor",
    "SmartFactor",
    "SmartPoseFactor",
    "Calibration",
    "FailureKind",
    "Key",
    "LinearizationMode",
    "Pose3D",
    "CameraValues",
]
