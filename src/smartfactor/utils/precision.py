"""
Precision and information matrix utilities for measurement noise.
"""
import numpy as np
import numpy.linalg as la
import scipy.linalg
from typing import Sequence
from numpy import ndarray

from .validation import _check_square, _check_positive_definite


def get_info_matrix_from_covariance_matrix(covar_mat: ndarray) -> ndarray:
    """
    Computes the information matrix (inverse covariance).

    Args:
        covar_mat: the covariance matrix

    Returns:
        the information matrix
    """
    _check_square(covar_mat)
    info_mat = la.inv(covar_mat)
    return 0.5 * (info_mat + info_mat.T)


def get_sqrt_information_from_covariance_matrix(covar_mat: ndarray) -> ndarray:
    """
    Computes the upper-triangular square root information matrix R of a
    covariance, such that R.T @ R == inv(covar_mat).

    Whitening a residual e with R gives a residual with identity covariance.

    Args:
        covar_mat: a symmetric positive definite covariance matrix

    Returns:
        the upper-triangular square root information matrix

    Raises:
        ValueError: the covariance is not symmetric positive definite
    """
    _check_square(covar_mat)
    _check_positive_definite(covar_mat, name="Covariance matrix")
    info_mat = get_info_matrix_from_covariance_matrix(covar_mat)
    return scipy.linalg.cholesky(info_mat, lower=False)


def get_covariance_matrix_from_sigmas(sigmas: Sequence[float]) -> ndarray:
    """
    Computes the diagonal covariance matrix from standard deviations.

    Args:
        sigmas: the standard deviation along each axis

    Returns:
        the covariance matrix
    """
    sigmas = np.asarray(sigmas, dtype=float)
    assert sigmas.ndim == 1, f"sigmas must be a vector, got shape {sigmas.shape}"
    return np.diag(sigmas**2)
