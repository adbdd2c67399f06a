import logging
from typing import Dict, List, Mapping, Optional, Sequence, Set

from attrs import define, field
import numpy as np

from .camera import PinholeCamera
from .types.key import Key
from .types.variables import Calibration, Pose3D

logger = logging.getLogger(__name__)


@define
class CameraValues:
    """
    The current camera estimates, keyed by camera variable. When a smart
    factor carries a sensor offset, these are the body poses and the factor
    composes the offset itself.
    """

    camera_map: Dict[Key, PinholeCamera] = field(factory=dict)
    """
    A mapping from camera keys to their estimated cameras.
    """

    def key_exists(self, key: Key) -> bool:
        """
        Check if a given key exists in the current estimates.

        Args:
            key: The key to check.
        Returns:
            True if the key exists, False otherwise.
        """
        assert isinstance(key, Key), f"Expected key to be of type Key, got {type(key)}"
        return key in self.camera_map

    def insert(
        self,
        key: Key,
        pose: Pose3D,
        calibration: Optional[Calibration] = None,
    ) -> None:
        """
        Insert a new camera. Use `update_camera` to overwrite an existing one.

        Raises:
            ValueError: the key is already present
        """
        assert isinstance(key, Key), f"Expected key to be of type Key, got {type(key)}"
        if key in self.camera_map:
            raise ValueError(f"Camera for key {key} already exists")
        self.camera_map[key] = PinholeCamera(pose, calibration or Calibration())

    def update_camera(self, key: Key, camera: PinholeCamera) -> None:
        assert isinstance(camera, PinholeCamera), f"Expected a PinholeCamera, got {type(camera)}"
        self.camera_map[key] = camera

    def get_camera(self, key: Key) -> PinholeCamera:
        """
        Get the estimated camera for a given key.

        Args:
            key: The key of the camera to retrieve.

        Returns:
            The estimated PinholeCamera.

        Raises:
            KeyError: no camera is stored under the key
        """
        assert isinstance(key, Key), f"Expected key to be of type Key, got {type(key)}"
        try:
            return self.camera_map[key]
        except KeyError as e:
            logger.error(f"Key {key} not found in current estimates: {e}")
            raise e

    def cameras_for(self, keys: Sequence[Key]) -> List[PinholeCamera]:
        """Returns the cameras for `keys`, in that order (repeated keys repeat the camera)."""
        return [self.get_camera(key) for key in keys]

    def retract(self, deltas: Mapping[Key, np.ndarray]) -> "CameraValues":
        """
        Returns new values with each camera in `deltas` moved by its tangent
        vector (6 entries for the pose, 11 for pose and calibration).
        """
        new_map = dict(self.camera_map)
        for key, delta in deltas.items():
            new_map[key] = self.get_camera(key).retract(delta)
        return CameraValues(camera_map=new_map)

    @property
    def all_keys(self) -> Set[Key]:
        """
        Get a set of all keys in the current estimates.

        Returns:
            A set of all keys.
        """
        return set(self.camera_map.keys())

    def __len__(self) -> int:
        return len(self.camera_map)
