"""
Common interface of the linearized factors produced by a smart factor.

All of them represent a quadratic cost over the stacked camera update
delta = [dc_0; ...; dc_(m-1)], ordered like `keys`.
"""
from abc import ABC, abstractmethod
from typing import List, Mapping, Sequence

import numpy as np
from numpy import ndarray

from ..types.key import Key
from ..utils.conversions import stack_key_vectors


class LinearFactor(ABC):
    """
    Base class for a linear(ized) factor over m camera variables of dimension D.
    """

    def __init__(self, keys: Sequence[Key], dim: int):
        self._keys: List[Key] = list(keys)
        self._dim = int(dim)

    @property
    def keys(self) -> List[Key]:
        return list(self._keys)

    @property
    def dim(self) -> int:
        """Dimension D of each camera variable."""
        return self._dim

    @property
    def size(self) -> int:
        """Number of camera blocks m."""
        return len(self._keys)

    @property
    def total_dim(self) -> int:
        return self._dim * len(self._keys)

    def stack_delta(self, delta: Mapping[Key, ndarray]) -> ndarray:
        """Stacks a per-key camera update into the ordering of this factor."""
        return stack_key_vectors(self._keys, delta, self._dim)

    def _check_vector(self, x) -> ndarray:
        if isinstance(x, Mapping):
            return self.stack_delta(x)
        x = np.asarray(x, dtype=float).reshape(-1)
        if x.shape != (self.total_dim,):
            raise ValueError(f"Expected a vector of length {self.total_dim}, got {x.shape}")
        return x

    @abstractmethod
    def information(self) -> ndarray:
        """Dense Hessian H (Dm x Dm) of the quadratic cost."""

    @abstractmethod
    def linear_term(self) -> ndarray:
        """The vector g such that the cost is 1/2 x'Hx - g'x + const."""

    @abstractmethod
    def multiply_hessian(self, x) -> ndarray:
        """Returns H @ x."""

    @abstractmethod
    def error(self, delta) -> float:
        """Value of the quadratic cost at the camera update `delta`."""

    def gradient_at_zero(self) -> ndarray:
        """Gradient of the cost at delta = 0."""
        return -self.linear_term()

    def hessian_diagonal(self) -> ndarray:
        return np.diag(self.information()).copy()

    def hessian_block_diagonal(self) -> List[ndarray]:
        H = self.information()
        D = self._dim
        return [H[i * D : (i + 1) * D, i * D : (i + 1) * D].copy() for i in range(self.size)]
