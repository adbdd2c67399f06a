"""
Calibrated pinhole camera: projection with analytic Jacobians.

The camera frame has z pointing forward along the optical axis. Pose
Jacobians are with respect to the right perturbation pose * Exp(xi), with
xi = (omega, v).
"""
from attrs import define, field, validators
import numpy as np
from numpy import ndarray
from typing import Optional

from .errors import CheiralityError
from .types.variables import Calibration, Pose3D
from .utils.transformations import skew


@define(eq=False)
class PinholeCamera:
    """
    A pinhole camera with a pose (camera to world) and Cal3_S2 intrinsics.
    """

    pose: Pose3D = field(
        factory=Pose3D,
        validator=validators.instance_of(Pose3D),
        metadata={"description": "Camera pose in the world frame"},
    )
    calibration: Calibration = field(
        factory=Calibration,
        validator=validators.instance_of(Calibration),
        metadata={"description": "Camera intrinsics"},
    )

    def __str__(self) -> str:
        return f"PinholeCamera({self.pose}, {self.calibration})"

    @property
    def dim(self) -> int:
        """Dimension of the full camera tangent space (pose and calibration)."""
        return Pose3D.DIM + Calibration.DIM

    def project(self, point: ndarray, compute_jacobians: bool = False):
        """
        Projects a world point into the image.

        Args:
            point: the world point (3,)
            compute_jacobians: also return the Jacobians of the pixel

        Returns:
            the pixel (2,), or (pixel, H_pose (2x6), H_point (2x3), H_cal (2x5))
            if compute_jacobians

        Raises:
            CheiralityError: the point is not in front of the camera
        """
        point = np.asarray(point, dtype=float)
        R = self.pose.rotation
        p_cam = R.T @ (point - self.pose.translation)
        depth = p_cam[2]
        if depth <= 0.0:
            raise CheiralityError(
                f"Point {point.tolist()} is behind the camera (depth {depth:.6g})",
                depth=float(depth),
            )

        inv_depth = 1.0 / depth
        p_intrinsic = p_cam[:2] * inv_depth
        if not compute_jacobians:
            return self.calibration.uncalibrate(p_intrinsic)

        pixel, H_cal, H_intrinsic = self.calibration.uncalibrate(
            p_intrinsic, compute_jacobians=True
        )
        D_intrinsic_cam = inv_depth * np.array(
            [[1.0, 0.0, -p_intrinsic[0]], [0.0, 1.0, -p_intrinsic[1]]]
        )
        H_cam = H_intrinsic @ D_intrinsic_cam
        # d p_cam / d (omega, v) = [skew(p_cam) | -I]
        H_pose = np.hstack([H_cam @ skew(p_cam), -H_cam])
        H_point = H_cam @ R.T
        return pixel, H_pose, H_point, H_cal

    def retract(self, delta: ndarray) -> "PinholeCamera":
        """
        Moves the camera by a tangent vector: the first 6 entries update the
        pose, the optional remaining 5 the calibration.
        """
        delta = np.asarray(delta, dtype=float).reshape(-1)
        if delta.shape[0] == Pose3D.DIM:
            return PinholeCamera(self.pose.retract(delta), self.calibration)
        if delta.shape[0] == self.dim:
            return PinholeCamera(
                self.pose.retract(delta[: Pose3D.DIM]),
                self.calibration.retract(delta[Pose3D.DIM :]),
            )
        raise ValueError(
            f"Camera delta must have {Pose3D.DIM} or {self.dim} entries, got {delta.shape[0]}"
        )

    def with_sensor_offset(self, body_P_sensor: Optional[Pose3D]) -> "PinholeCamera":
        """Returns the camera whose pose is pose * body_P_sensor (self when no offset)."""
        if body_P_sensor is None:
            return self
        return PinholeCamera(self.pose.compose(body_P_sensor), self.calibration)

    def equals(self, other: "PinholeCamera", tol: float = 1e-9) -> bool:
        return self.pose.equals(other.pose, tol) and self.calibration.equals(
            other.calibration, tol
        )
