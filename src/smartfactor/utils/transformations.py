"""
Rotation and rigid-transform utilities used by the pose and camera types.
"""
import numpy as np
import scipy.spatial.transform
from .validation import _check_square, _check_rotation_matrix


def skew(v: np.ndarray) -> np.ndarray:
    """Returns the 3x3 skew-symmetric matrix such that skew(v) @ w == cross(v, w).

    Args:
        v: a 3-vector

    Returns:
        3x3 skew-symmetric matrix
    """
    x, y, z = v
    return np.array([[0.0, -z, y], [z, 0.0, -x], [-y, x, 0.0]])


def get_rotation_matrix_from_transformation_matrix(T: np.ndarray) -> np.ndarray:
    """Returns the rotation matrix from the transformation matrix.

    Args:
        T: the transformation matrix

    Returns:
        the rotation matrix
    """
    _check_square(T)
    dim = T.shape[0] - 1
    return T[:dim, :dim]


def get_translation_from_transformation_matrix(T: np.ndarray) -> np.ndarray:
    """Returns the translation from a transformation matrix.

    Args:
        T: the transformation matrix

    Returns:
        the translation vector
    """
    _check_square(T)
    dim = T.shape[0] - 1
    return T[:dim, dim]


def get_rotation_matrix_from_yaw(psi: float) -> np.ndarray:
    """Returns the 3D rotation matrix about the z axis.

    Args:
        psi: the yaw angle in radians

    Returns:
        3x3 rotation matrix
    """
    R = np.eye(3)
    R[:2, :2] = np.array([[np.cos(psi), -np.sin(psi)], [np.sin(psi), np.cos(psi)]])
    return R


def get_rotation_matrix_from_quat(quat: np.ndarray) -> np.ndarray:
    """Returns the rotation matrix from a quaternion in scalar-last (x, y, z, w) format.

    Args:
        quat: the quaternion as (x, y, z, w)

    Returns:
        3x3 rotation matrix
    """
    assert quat.shape == (4,)
    rot = scipy.spatial.transform.Rotation.from_quat(quat)
    assert isinstance(rot, scipy.spatial.transform.Rotation)

    rot_mat = rot.as_matrix()
    assert isinstance(rot_mat, np.ndarray)
    assert rot_mat.shape == (3, 3)

    _check_rotation_matrix(rot_mat, assert_test=True)
    return rot_mat


def get_quat_from_rotation_matrix(mat: np.ndarray) -> np.ndarray:
    """Returns the quaternion from a rotation matrix in scalar-last (x, y, z, w) format.
    Ensures w is positive by convention, given R(-q) = R(q).

    Args:
        mat: the 3x3 rotation matrix

    Returns:
        quaternion as (x, y, z, w)
    """
    _check_rotation_matrix(mat)
    rot = scipy.spatial.transform.Rotation.from_matrix(mat)
    assert isinstance(rot, scipy.spatial.transform.Rotation)
    quat = rot.as_quat()
    assert isinstance(quat, np.ndarray)

    # Ensure positive w by convention
    if quat[-1] < 0:
        quat = np.negative(quat)

    return quat


def get_rotation_matrix_from_rotvec(omega: np.ndarray) -> np.ndarray:
    """Exponential map of SO(3): the rotation matrix for a rotation vector.

    Args:
        omega: axis-angle rotation vector (3,)

    Returns:
        3x3 rotation matrix
    """
    return scipy.spatial.transform.Rotation.from_rotvec(omega).as_matrix()


def get_se3_left_jacobian(omega: np.ndarray) -> np.ndarray:
    """Returns the SO(3) left Jacobian V(omega) that maps the translational
    tangent v to the translation of Exp([omega, v]).

    Args:
        omega: rotation vector (3,)

    Returns:
        3x3 matrix V
    """
    theta = np.linalg.norm(omega)
    W = skew(omega)
    if theta < 1e-4:
        return np.eye(3) + 0.5 * W + (W @ W) / 6.0
    theta_sq = theta * theta
    return (
        np.eye(3)
        + (1.0 - np.cos(theta)) / theta_sq * W
        + (theta - np.sin(theta)) / (theta_sq * theta) * (W @ W)
    )


def get_adjoint_matrix(R: np.ndarray, t: np.ndarray) -> np.ndarray:
    """Returns the 6x6 adjoint of the rigid transform (R, t) for tangent
    vectors ordered as (rotation, translation).

    Args:
        R: 3x3 rotation matrix
        t: translation (3,)

    Returns:
        6x6 adjoint matrix
    """
    adj = np.zeros((6, 6))
    adj[:3, :3] = R
    adj[3:, :3] = skew(t) @ R
    adj[3:, 3:] = R
    return adj
