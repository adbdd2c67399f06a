"""
Configuration for smart factors, loadable from YAML.

Example file:

    camera_dim: 6
    pixel_sigma: 1.0
    body_P_sensor:
      rotation: [0.0, 0.0, 0.7071068, 0.7071068]   # quaternion (x, y, z, w)
      translation: [0.1, 0.0, 0.0]
    linearization:
      lambda: 0.0
      diagonal_damping: false
      mode: hessian
"""
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

from attrs import define, field, validators
import numpy as np
import yaml

from .types.enums import LinearizationMode
from .types.noise import NoiseModel, get_noise_model_from_sigmas
from .types.variables import Calibration, Pose3D
from .utils.validation import _check_lambda

logger = logging.getLogger(__name__)

VALID_CAMERA_DIMS = [Pose3D.DIM, Pose3D.DIM + Calibration.DIM]


def _lambda_validator(instance, attribute, value):
    _check_lambda(value)


def _to_mode(value: Union[str, LinearizationMode]) -> LinearizationMode:
    if isinstance(value, LinearizationMode):
        return value
    try:
        return LinearizationMode[str(value).upper()]
    except KeyError:
        valid = [mode.name.lower() for mode in LinearizationMode]
        raise ValueError(f"Unknown linearization mode: {value}. Valid modes are: {valid}")


@define
class LinearizationParams:
    """
    How a smart factor is linearized.
    """

    lambda_: float = field(
        default=0.0,
        converter=float,
        validator=_lambda_validator,
        metadata={"description": "Levenberg damping added to E'E when eliminating the point"},
    )
    diagonal_damping: bool = field(
        default=False,
        validator=validators.instance_of(bool),
        metadata={"description": "Damp with diag(E'E) instead of the identity"},
    )
    mode: LinearizationMode = field(
        default=LinearizationMode.HESSIAN,
        converter=_to_mode,
        metadata={"description": "Which linearized factor to produce"},
    )


@define(eq=False)
class SmartFactorConfig:
    """
    Settings shared by the smart factors of one sensor.
    """

    camera_dim: int = field(
        default=Pose3D.DIM,
        converter=int,
        validator=validators.in_(VALID_CAMERA_DIMS),
        metadata={"description": "Camera variable dimension (6: pose, 11: pose and calibration)"},
    )
    pixel_sigma: float = field(
        default=1.0,
        converter=float,
        validator=validators.gt(0.0),
        metadata={"description": "Pixel standard deviation of every measurement"},
    )
    body_P_sensor: Optional[Pose3D] = field(
        default=None,
        validator=validators.optional(validators.instance_of(Pose3D)),
        metadata={"description": "Pose of the camera in the body frame (optional)"},
    )
    linearization: LinearizationParams = field(
        factory=LinearizationParams,
        validator=validators.instance_of(LinearizationParams),
        metadata={"description": "Linearization settings"},
    )

    def default_noise(self) -> NoiseModel:
        """The isotropic pixel noise model described by this config."""
        return get_noise_model_from_sigmas(self.pixel_sigma, dim=2)


def pose_from_dict(data: Dict[str, Any]) -> Pose3D:
    """
    Reads a pose given as {rotation: [qx, qy, qz, qw], translation: [x, y, z]}.
    A 3x3 nested list is also accepted for the rotation.
    """
    rotation = np.asarray(data.get("rotation", [0.0, 0.0, 0.0, 1.0]), dtype=float)
    translation = data.get("translation", [0.0, 0.0, 0.0])
    if rotation.shape == (4,):
        return Pose3D.from_quaternion(rotation, translation)
    if rotation.shape == (3, 3):
        return Pose3D(rotation=rotation, translation=translation)
    raise ValueError(f"Rotation must be a quaternion or a 3x3 matrix, got shape {rotation.shape}")


def config_from_dict(data: Optional[Dict[str, Any]]) -> SmartFactorConfig:
    """
    Builds a SmartFactorConfig from a parsed YAML mapping. Missing entries
    take their defaults.
    """
    data = data or {}
    lin_data = data.get("linearization") or {}
    linearization = LinearizationParams(
        lambda_=lin_data.get("lambda", 0.0),
        diagonal_damping=bool(lin_data.get("diagonal_damping", False)),
        mode=lin_data.get("mode", LinearizationMode.HESSIAN),
    )

    body_P_sensor = None
    if data.get("body_P_sensor") is not None:
        body_P_sensor = pose_from_dict(data["body_P_sensor"])

    config = SmartFactorConfig(
        camera_dim=data.get("camera_dim", Pose3D.DIM),
        pixel_sigma=data.get("pixel_sigma", 1.0),
        body_P_sensor=body_P_sensor,
        linearization=linearization,
    )
    logger.debug(f"Loaded smart factor config: {config}")
    return config


def load_config(path: Union[str, Path]) -> SmartFactorConfig:
    """
    Loads a SmartFactorConfig from a YAML file.

    Raises:
        FileNotFoundError: the file does not exist
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Smart factor config not found at {path}")
    with open(path) as stream:
        data = yaml.safe_load(stream)
    return config_from_dict(data)


def make_factor(config: SmartFactorConfig):
    """
    Creates an empty smart factor of the configured camera dimension and
    sensor offset.
    """
    from .smart_factor import SmartCameraFactor, SmartPoseFactor

    if config.camera_dim == SmartPoseFactor.D:
        return SmartPoseFactor(body_P_sensor=config.body_P_sensor)
    return SmartCameraFactor(body_P_sensor=config.body_P_sensor)
