"""
Variable types for the smart factors (poses and calibrations).

Pose tangent vectors are ordered (rotation, translation) and poses are
perturbed on the right: pose.retract(xi) == pose.compose(Pose3D.expmap(xi)).
"""
from attrs import define, field, validators
from typing import ClassVar, Optional, Sequence
import numpy as np
from numpy import ndarray

from ..utils.conversions import to_float_array
from ..utils.validation import (
    array_shape_validator,
    finite_validator,
    rotation_validator,
    _check_transformation_matrix,
)
from ..utils.transformations import (
    get_adjoint_matrix,
    get_rotation_matrix_from_quat,
    get_rotation_matrix_from_rotvec,
    get_rotation_matrix_from_transformation_matrix,
    get_se3_left_jacobian,
    get_translation_from_transformation_matrix,
)


@define(eq=False)
class Pose3D:
    """
    3D rigid transform with a rotation matrix and a translation.
    """

    DIM: ClassVar[int] = 6

    rotation: ndarray = field(
        factory=lambda: np.eye(3),
        converter=to_float_array,
        validator=[array_shape_validator((3, 3)), rotation_validator()],
        metadata={"description": "The 3x3 rotation matrix (body to world)"},
    )
    translation: ndarray = field(
        factory=lambda: np.zeros(3),
        converter=to_float_array,
        validator=[array_shape_validator((3,)), finite_validator()],
        metadata={"description": "The position (x, y, z) of the pose"},
    )

    def __str__(self) -> str:
        return f"Pose3D(R={self.rotation.tolist()}, t={self.translation.tolist()})"

    @classmethod
    def identity(cls) -> "Pose3D":
        return cls()

    @classmethod
    def from_matrix(cls, T: ndarray) -> "Pose3D":
        """Builds a pose from a 4x4 homogeneous transformation matrix."""
        T = np.asarray(T, dtype=float)
        _check_transformation_matrix(T, dim=3)
        return cls(
            rotation=get_rotation_matrix_from_transformation_matrix(T),
            translation=get_translation_from_transformation_matrix(T),
        )

    @classmethod
    def from_quaternion(
        cls, quat: Sequence[float], translation: Sequence[float] = (0.0, 0.0, 0.0)
    ) -> "Pose3D":
        """Builds a pose from a scalar-last (x, y, z, w) quaternion and a translation."""
        rot = get_rotation_matrix_from_quat(np.asarray(quat, dtype=float))
        return cls(rotation=rot, translation=translation)

    @classmethod
    def expmap(cls, xi: ndarray) -> "Pose3D":
        """Exponential map of SE(3) for a tangent vector xi = (omega, v)."""
        xi = np.asarray(xi, dtype=float).reshape(-1)
        assert xi.shape == (6,), f"tangent vector must have 6 entries, got {xi.shape}"
        omega, v = xi[:3], xi[3:]
        return cls(
            rotation=get_rotation_matrix_from_rotvec(omega),
            translation=get_se3_left_jacobian(omega) @ v,
        )

    @property
    def transformation_matrix(self) -> ndarray:
        """Returns the 4x4 homogeneous transformation matrix."""
        T = np.eye(4)
        T[:3, :3] = self.rotation
        T[:3, 3] = self.translation
        return T

    def compose(self, other: "Pose3D") -> "Pose3D":
        """Returns self * other."""
        return Pose3D(
            rotation=self.rotation @ other.rotation,
            translation=self.translation + self.rotation @ other.translation,
        )

    def inverse(self) -> "Pose3D":
        R_t = self.rotation.T
        return Pose3D(rotation=R_t, translation=-R_t @ self.translation)

    def between(self, other: "Pose3D") -> "Pose3D":
        """Returns inverse(self) * other."""
        return self.inverse().compose(other)

    def transform_to(self, point: ndarray) -> ndarray:
        """Expresses a world point in this pose's frame."""
        return self.rotation.T @ (np.asarray(point, dtype=float) - self.translation)

    def transform_from(self, point: ndarray) -> ndarray:
        """Expresses a point given in this pose's frame in the world frame."""
        return self.rotation @ np.asarray(point, dtype=float) + self.translation

    def retract(self, xi: ndarray) -> "Pose3D":
        return self.compose(Pose3D.expmap(xi))

    def adjoint_matrix(self) -> ndarray:
        """Returns the 6x6 adjoint, mapping tangents as T * Exp(xi) * T^-1 == Exp(Ad * xi)."""
        return get_adjoint_matrix(self.rotation, self.translation)

    def equals(self, other: Optional["Pose3D"], tol: float = 1e-9) -> bool:
        if not isinstance(other, Pose3D):
            return False
        return bool(
            np.allclose(self.rotation, other.rotation, atol=tol)
            and np.allclose(self.translation, other.translation, atol=tol)
        )


@define(eq=False)
class Calibration:
    """
    Pinhole intrinsics (fx, fy, skew, u0, v0), the 5-parameter Cal3_S2 model.
    """

    DIM: ClassVar[int] = 5

    fx: float = field(
        default=1.0,
        converter=float,
        validator=validators.gt(0.0),
        metadata={"description": "Focal length in x (pixels)"},
    )
    fy: float = field(
        default=1.0,
        converter=float,
        validator=validators.gt(0.0),
        metadata={"description": "Focal length in y (pixels)"},
    )
    skew: float = field(
        default=0.0,
        converter=float,
        metadata={"description": "Skew between the image axes"},
    )
    u0: float = field(
        default=0.0,
        converter=float,
        metadata={"description": "Principal point x (pixels)"},
    )
    v0: float = field(
        default=0.0,
        converter=float,
        metadata={"description": "Principal point y (pixels)"},
    )

    @classmethod
    def from_matrix(cls, K: ndarray) -> "Calibration":
        """Builds a calibration from an upper-triangular 3x3 intrinsic matrix."""
        K = np.asarray(K, dtype=float)
        assert K.shape == (3, 3), f"intrinsic matrix must be 3x3, got {K.shape}"
        return cls(fx=K[0, 0], fy=K[1, 1], skew=K[0, 1], u0=K[0, 2], v0=K[1, 2])

    @classmethod
    def from_vector(cls, vec: Sequence[float]) -> "Calibration":
        fx, fy, s, u0, v0 = [float(x) for x in vec]
        return cls(fx=fx, fy=fy, skew=s, u0=u0, v0=v0)

    @property
    def K(self) -> ndarray:
        """Returns the 3x3 intrinsic matrix."""
        return np.array(
            [[self.fx, self.skew, self.u0], [0.0, self.fy, self.v0], [0.0, 0.0, 1.0]]
        )

    def vector(self) -> ndarray:
        return np.array([self.fx, self.fy, self.skew, self.u0, self.v0])

    def uncalibrate(self, p: ndarray, compute_jacobians: bool = False):
        """
        Converts normalized image coordinates to pixels.

        Args:
            p: intrinsic coordinates (x, y)
            compute_jacobians: also return the Jacobians

        Returns:
            the pixel, or (pixel, H_cal (2x5), H_p (2x2)) if compute_jacobians
        """
        x, y = p
        pixel = np.array([self.fx * x + self.skew * y + self.u0, self.fy * y + self.v0])
        if not compute_jacobians:
            return pixel
        H_cal = np.array([[x, 0.0, y, 1.0, 0.0], [0.0, y, 0.0, 0.0, 1.0]])
        H_p = np.array([[self.fx, self.skew], [0.0, self.fy]])
        return pixel, H_cal, H_p

    def retract(self, delta: ndarray) -> "Calibration":
        delta = np.asarray(delta, dtype=float).reshape(-1)
        assert delta.shape == (self.DIM,), f"calibration delta must have {self.DIM} entries"
        return Calibration.from_vector(self.vector() + delta)

    def equals(self, other: Optional["Calibration"], tol: float = 1e-9) -> bool:
        if not isinstance(other, Calibration):
            return False
        return bool(np.allclose(self.vector(), other.vector(), atol=tol))
