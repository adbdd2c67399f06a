"""
Plain-dict and YAML (de)serialization of smart factors.

Only the measurement set and the sensor offset are stored; linearizations
are always recomputed from them.

    type: SmartPoseFactor
    body_P_sensor: null
    measurements:
      - key: X0
        pixel: [320.0, 240.0]
        noise: {type: isotropic, sigma: 1.0}
"""
import logging
from typing import IO, Any, Dict, Optional

import yaml

from .smart_factor import SmartCameraFactor, SmartFactor, SmartPoseFactor
from .types.key import Key
from .types.noise import DiagonalNoise, GaussianNoise, IsotropicNoise, NoiseModel
from .types.variables import Pose3D
from .utils.transformations import get_quat_from_rotation_matrix
from .config import pose_from_dict

logger = logging.getLogger(__name__)

FACTOR_TYPES = {
    "SmartPoseFactor": SmartPoseFactor,
    "SmartCameraFactor": SmartCameraFactor,
}


def noise_to_dict(noise: NoiseModel) -> Dict[str, Any]:
    if isinstance(noise, IsotropicNoise):
        return {"type": "isotropic", "sigma": float(noise.sigma)}
    if isinstance(noise, DiagonalNoise):
        return {"type": "diagonal", "sigmas": noise.sigmas.tolist()}
    if isinstance(noise, GaussianNoise):
        return {"type": "gaussian", "covariance": noise.covariance.tolist()}
    raise TypeError(f"Cannot serialize noise model of type {type(noise)}")


def noise_from_dict(data: Dict[str, Any]) -> NoiseModel:
    noise_type = data.get("type")
    if noise_type == "isotropic":
        return IsotropicNoise(sigma=data["sigma"], dimension=int(data.get("dimension", 2)))
    if noise_type == "diagonal":
        return DiagonalNoise(sigmas=data["sigmas"])
    if noise_type == "gaussian":
        return GaussianNoise(covariance=data["covariance"])
    raise ValueError(f"Unknown noise model type: {noise_type}")


def pose_to_dict(pose: Pose3D) -> Dict[str, Any]:
    return {
        "rotation": get_quat_from_rotation_matrix(pose.rotation).tolist(),
        "translation": pose.translation.tolist(),
    }


def factor_to_dict(factor: SmartFactor) -> Dict[str, Any]:
    """
    Converts a smart factor to a dict of builtin types, suitable for YAML.
    """
    return {
        "type": type(factor).__name__,
        "body_P_sensor": (
            None if factor.body_P_sensor is None else pose_to_dict(factor.body_P_sensor)
        ),
        "measurements": [
            {
                "key": str(key),
                "pixel": [float(x) for x in pixel],
                "noise": noise_to_dict(noise),
            }
            for pixel, key, noise in zip(factor.measured, factor.keys, factor.noise)
        ],
    }


def factor_from_dict(data: Dict[str, Any]) -> SmartFactor:
    """
    Rebuilds a smart factor from `factor_to_dict` output.

    Raises:
        ValueError: unknown factor or noise type
    """
    factor_type = data.get("type")
    if factor_type not in FACTOR_TYPES:
        raise ValueError(
            f"Unknown smart factor type: {factor_type}. Valid types are: {list(FACTOR_TYPES)}"
        )

    body_P_sensor = None
    if data.get("body_P_sensor") is not None:
        body_P_sensor = pose_from_dict(data["body_P_sensor"])

    factor = FACTOR_TYPES[factor_type](body_P_sensor=body_P_sensor)
    for entry in data.get("measurements") or []:
        factor.add(entry["pixel"], Key(entry["key"]), noise_from_dict(entry["noise"]))
    logger.debug(f"Loaded {factor_type} with {len(factor)} measurements")
    return factor


def dump_yaml(factor: SmartFactor, stream: Optional[IO] = None) -> Optional[str]:
    """Writes the factor as YAML to `stream`, or returns the YAML string if no stream is given."""
    return yaml.safe_dump(factor_to_dict(factor), stream, sort_keys=False)


def load_yaml(stream) -> SmartFactor:
    """Reads a factor written by `dump_yaml` from a string or an open stream."""
    return factor_from_dict(yaml.safe_load(stream))
