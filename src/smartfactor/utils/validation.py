"""
Validation utilities for smartfactor types.
"""
from typing import Optional, Tuple
import numpy as np


def array_shape_validator(shape: Tuple[int, ...]):
    """
    Returns a validator that checks if a value is a numpy array of a specific shape.
    """

    def _validator(instance, attribute, value):
        if not isinstance(value, np.ndarray):
            raise TypeError(f"{attribute.name} must be a numpy array.")
        if value.shape != shape:
            raise ValueError(
                f"{attribute.name} must have shape {shape}, got {value.shape}."
            )

    return _validator


def finite_validator():
    """
    Validates that every entry of an array is finite.
    """

    def _validator(instance, attribute, value):
        if not np.all(np.isfinite(value)):
            raise ValueError(f"{attribute.name} must be finite. Got {value}")

    return _validator


def rotation_validator():
    """
    Validates that a 3x3 array is a rotation matrix.
    """

    def _validator(instance, attribute, value):
        _check_rotation_matrix(value, assert_test=True)

    return _validator


def _check_square(mat: np.ndarray) -> None:
    """Checks that a matrix is square"""
    assert mat.shape[0] == mat.shape[1], "matrix must be square"


def _check_positive_definite(mat: np.ndarray, name: str = "matrix") -> None:
    """Checks that a symmetric matrix is positive definite.

    Raises:
        ValueError: the matrix is not symmetric or has a non-positive eigenvalue
    """
    if not np.allclose(mat, mat.T):
        raise ValueError(f"{name} must be symmetric.")
    eigvals = np.linalg.eigvalsh(mat)
    if not np.all(eigvals > 0):
        raise ValueError(f"{name} must be positive definite. Eigenvalues: {eigvals}")


def _check_transformation_matrix(
    T: np.ndarray, assert_test: bool = True, dim: Optional[int] = None
) -> None:
    """Checks that the matrix passed in is a homogeneous transformation matrix.

    Args:
        T: the homogeneous transformation matrix to test
        assert_test: Whether this is a 'hard' test with assertions or 'soft' test
        dim: dimension of the homogeneous transformation matrix
    """
    _check_square(T)
    matrix_dim = T.shape[0]
    if dim is not None:
        assert (
            matrix_dim == dim + 1
        ), f"matrix dimension {matrix_dim} != dim + 1 {dim + 1}"

    assert matrix_dim == 4, f"Was {T.shape} but must be 4x4 for a 3D transformation matrix"

    # check that is rotation matrix in upper left block
    R = T[:-1, :-1]
    _check_rotation_matrix(R, assert_test=assert_test)

    # check that the bottom row is [0, 0, ..., 1]
    bottom = T[-1, :]
    bottom_expected = np.array([0] * (matrix_dim - 1) + [1])
    assert np.allclose(
        bottom.flatten(), bottom_expected
    ), f"Transformation matrix bottom row is {bottom} but should be {bottom_expected}"


def _check_rotation_matrix(R: np.ndarray, assert_test: bool = False) -> None:
    """
    Checks that R is a rotation matrix.

    Args:
        R: the candidate rotation matrix
        assert_test: if false just return if not rotation matrix, otherwise raise error

    Raises:
        ValueError: the candidate rotation matrix is not orthogonal
        ValueError: the candidate rotation matrix determinant is incorrect
    """
    d = R.shape[0]
    is_orthogonal = np.allclose(R @ R.T, np.eye(d), rtol=1e-3, atol=1e-3)
    if not is_orthogonal:
        if assert_test:
            raise ValueError(f"R is not orthogonal {R @ R.T}")

    has_correct_det = abs(np.linalg.det(R) - 1) < 1e-3
    if not has_correct_det:
        if assert_test:
            raise ValueError(f"R det incorrect {np.linalg.det(R)}")


def _check_valid_key(instance, attribute, key: str) -> None:
    """
    Checks that a key is valid (non-empty string starting with a capital letter followed by numbers).

    Args:
        key: the key to check
    Raises:
        ValueError: if the key is not valid
    """
    if len(key) < 2:
        raise ValueError(f"Invalid key: {key!r}")
    first_is_cap_letter = key[0].isupper()
    rest_are_numbers = key[1:].isdigit()
    if not (first_is_cap_letter and rest_are_numbers):
        raise ValueError(f"Invalid key: {key}")


def _check_lambda(lambda_: float) -> None:
    """Checks that a Levenberg damping value is a non-negative number."""
    if not np.isfinite(lambda_) or lambda_ < 0.0:
        raise ValueError(f"Damping lambda must be finite and >= 0, got {lambda_}")
