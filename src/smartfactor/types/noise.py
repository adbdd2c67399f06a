"""
Noise models for pixel measurements.

A noise model whitens a residual system: every row block [F | E | b] of a
measurement is left-multiplied by the same square root information matrix R
(R.T @ R == inv(covariance)) so the whitened residual has identity covariance.
"""
from abc import ABC, abstractmethod
from attrs import define, field, validators
import numpy as np
from numpy import ndarray
from typing import Sequence, Tuple, Union

from ..utils.conversions import to_float_array
from ..utils.precision import (
    get_covariance_matrix_from_sigmas,
    get_sqrt_information_from_covariance_matrix,
)


@define(eq=False)
class NoiseModel(ABC):
    """
    Base class for Gaussian measurement noise models.
    """

    @property
    @abstractmethod
    def dim(self) -> int:
        """Dimension of the measurement this model applies to."""

    @property
    @abstractmethod
    def covariance_matrix(self) -> ndarray:
        """Returns the covariance matrix as a numpy array."""

    @property
    @abstractmethod
    def sqrt_information(self) -> ndarray:
        """Returns the upper-triangular square root information matrix."""

    def whiten(self, v: ndarray) -> ndarray:
        """Whitens a residual vector."""
        return self.sqrt_information @ v

    def whiten_matrix(self, H: ndarray) -> ndarray:
        """Whitens every column of a Jacobian block."""
        return self.sqrt_information @ H

    def whiten_system(self, *blocks: ndarray, b: ndarray) -> Tuple[ndarray, ...]:
        """
        Whitens the augmented row block [blocks... | b] in one operation.

        All blocks and the right-hand side see the same whitening, which keeps
        a later Schur complement over them consistent.

        Args:
            blocks: Jacobian blocks with `dim` rows each
            b: right-hand side vector of length `dim`

        Returns:
            the whitened blocks followed by the whitened right-hand side
        """
        b = np.asarray(b, dtype=float).reshape(-1)
        for block in blocks:
            if block.shape[0] != self.dim:
                raise ValueError(
                    f"Cannot whiten a block with {block.shape[0]} rows using a {self.dim}-dim noise model"
                )
        if b.shape != (self.dim,):
            raise ValueError(f"Right-hand side must have length {self.dim}, got {b.shape}")

        widths = [block.shape[1] for block in blocks]
        augmented = np.hstack(list(blocks) + [b.reshape(-1, 1)])
        whitened = self.whiten_matrix(augmented)
        parts = np.hsplit(whitened, np.cumsum(widths))
        return tuple(parts[:-1]) + (parts[-1].reshape(-1),)

    def distance(self, v: ndarray) -> float:
        """Squared Mahalanobis norm of a residual, i.e. ||whiten(v)||^2."""
        w = self.whiten(np.asarray(v, dtype=float))
        return float(w @ w)

    def equals(self, other: "NoiseModel", tol: float = 1e-9) -> bool:
        """Two noise models are equal if they are the same kind with the same covariance."""
        if type(self) is not type(other) or self.dim != other.dim:
            return False
        return bool(np.allclose(self.covariance_matrix, other.covariance_matrix, atol=tol))


@define(eq=False)
class IsotropicNoise(NoiseModel):
    """
    Noise with the same standard deviation along every axis.
    """

    sigma: float = field(
        converter=float,
        validator=validators.gt(0.0),
        metadata={"description": "Standard deviation along every axis"},
    )
    dimension: int = field(
        default=2,
        validator=validators.and_(validators.instance_of(int), validators.gt(0)),
        metadata={"description": "Dimension of the measurement"},
    )

    def __str__(self) -> str:
        return f"IsotropicNoise(dim={self.dimension}, sigma={self.sigma})"

    @property
    def dim(self) -> int:
        return self.dimension

    @property
    def covariance_matrix(self) -> ndarray:
        return np.eye(self.dimension) * self.sigma**2

    @property
    def sqrt_information(self) -> ndarray:
        return np.eye(self.dimension) / self.sigma

    def whiten(self, v: ndarray) -> ndarray:
        return np.asarray(v, dtype=float) / self.sigma

    def whiten_matrix(self, H: ndarray) -> ndarray:
        return H / self.sigma


@define(eq=False)
class DiagonalNoise(NoiseModel):
    """
    Independent noise with a separate standard deviation per axis.
    """

    sigmas: ndarray = field(
        converter=to_float_array,
        metadata={"description": "Standard deviation along each axis"},
    )

    @sigmas.validator
    def _check_sigmas(self, attribute, value):
        if value.ndim != 1 or value.size == 0:
            raise ValueError(f"sigmas must be a non-empty vector, got shape {value.shape}")
        if not np.all(value > 0.0):
            raise ValueError(f"sigmas must be positive, got {value}")

    def __str__(self) -> str:
        return f"DiagonalNoise(sigmas={self.sigmas.tolist()})"

    @property
    def dim(self) -> int:
        return self.sigmas.shape[0]

    @property
    def covariance_matrix(self) -> ndarray:
        return get_covariance_matrix_from_sigmas(self.sigmas)

    @property
    def sqrt_information(self) -> ndarray:
        return np.diag(1.0 / self.sigmas)

    def whiten(self, v: ndarray) -> ndarray:
        return np.asarray(v, dtype=float) / self.sigmas

    def whiten_matrix(self, H: ndarray) -> ndarray:
        return H / self.sigmas[:, np.newaxis]


@define(eq=False)
class GaussianNoise(NoiseModel):
    """
    Correlated noise given by a full covariance matrix.
    """

    covariance: ndarray = field(
        converter=to_float_array,
        metadata={"description": "Full covariance matrix of the measurement"},
    )

    def __attrs_post_init__(self):
        if self.covariance.ndim != 2 or self.covariance.shape[0] != self.covariance.shape[1]:
            raise ValueError(f"Covariance must be a square matrix, got shape {self.covariance.shape}")
        # rejects covariances that are not positive definite
        get_sqrt_information_from_covariance_matrix(self.covariance)

    def __str__(self) -> str:
        return f"GaussianNoise(covariance={self.covariance.tolist()})"

    @property
    def dim(self) -> int:
        return self.covariance.shape[0]

    @property
    def covariance_matrix(self) -> ndarray:
        return self.covariance.copy()

    @property
    def sqrt_information(self) -> ndarray:
        return get_sqrt_information_from_covariance_matrix(self.covariance)


def get_noise_model_from_sigmas(sigmas: Union[float, Sequence[float]], dim: int = 2) -> NoiseModel:
    """Creates the simplest noise model matching the given standard deviations.

    Args:
        sigmas: a single standard deviation, or one per axis
        dim: the measurement dimension when a single sigma is given

    Returns:
        IsotropicNoise if all sigmas agree, DiagonalNoise otherwise
    """
    if np.isscalar(sigmas):
        return IsotropicNoise(sigma=float(sigmas), dimension=dim)

    sigma_arr = np.asarray(sigmas, dtype=float)
    if np.allclose(sigma_arr, sigma_arr[0]):
        return IsotropicNoise(sigma=float(sigma_arr[0]), dimension=int(sigma_arr.shape[0]))
    return DiagonalNoise(sigmas=sigma_arr)


def unit_noise(dim: int = 2) -> IsotropicNoise:
    """Noise model with identity covariance: whitening leaves residuals unchanged."""
    return IsotropicNoise(sigma=1.0, dimension=dim)
