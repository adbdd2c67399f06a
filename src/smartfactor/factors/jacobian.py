"""
Jacobian factors with the landmark projected out of the residual.

JacobianFactorQ whitens the system with P = I - E Q E', which at lambda = 0
is the orthogonal projector onto the null space of E'. JacobianFactorSVD
uses an explicit orthonormal basis Enull of that null space instead, and so
has 2m - 3 rows.
"""
from typing import Sequence, Tuple

import numpy as np
from numpy import ndarray

from .base import LinearFactor
from ..schur import build_full_f
from ..types.key import Key


class RegularJacobianFactor(LinearFactor):
    """
    Cost 1/2 ||A x - b||^2 over m camera variables of dimension D.
    """

    def __init__(self, keys: Sequence[Key], dim: int, A: ndarray, b: ndarray):
        super().__init__(keys, dim)
        assert A.shape[1] == self.total_dim, (
            f"A must have {self.total_dim} columns, got {A.shape[1]}"
        )
        assert b.shape == (A.shape[0],), f"b must have length {A.shape[0]}, got {b.shape}"
        self._A = A
        self._b = b

    def __repr__(self) -> str:
        keys = ", ".join(str(k) for k in self._keys)
        return f"{type(self).__name__}(keys=[{keys}], rows={self._A.shape[0]}, D={self.dim})"

    def jacobian(self) -> ndarray:
        return self._A.copy()

    def rhs(self) -> ndarray:
        return self._b.copy()

    def rows(self) -> int:
        return self._A.shape[0]

    def information(self) -> ndarray:
        return self._A.T @ self._A

    def linear_term(self) -> ndarray:
        return self._A.T @ self._b

    def multiply_hessian(self, x) -> ndarray:
        x = self._check_vector(x)
        return self._A.T @ (self._A @ x)

    def error(self, delta) -> float:
        x = self._check_vector(delta)
        r = self._A @ x - self._b
        return float(0.5 * r @ r)

    def hessian_diagonal(self) -> ndarray:
        return np.sum(self._A * self._A, axis=0)


class JacobianFactorQ(RegularJacobianFactor):
    """
    Jacobian factor (I - E Q E') F, (I - E Q E') b built from the assembled
    F blocks, E, point covariance Q and b.
    """

    def __init__(
        self,
        fblocks: Sequence[Tuple[Key, ndarray]],
        E: ndarray,
        Q: ndarray,
        b: ndarray,
    ):
        if len(fblocks) == 0:
            raise ValueError("A Jacobian factor needs at least one F block")
        F = build_full_f(fblocks)
        P = np.eye(E.shape[0]) - E @ Q @ E.T
        super().__init__(
            [key for key, _ in fblocks], fblocks[0][1].shape[1], P @ F, P @ b
        )
        self._point_covariance = np.array(Q, dtype=float)

    @property
    def point_covariance(self) -> ndarray:
        return self._point_covariance.copy()


class JacobianFactorSVD(RegularJacobianFactor):
    """
    Jacobian factor Enull' F, Enull' b: the camera-only system with the
    point eliminated exactly (lambda = 0).
    """

    def __init__(
        self,
        fblocks: Sequence[Tuple[Key, ndarray]],
        Enull: ndarray,
        b: ndarray,
    ):
        if len(fblocks) == 0:
            raise ValueError("A Jacobian factor needs at least one F block")
        F = build_full_f(fblocks)
        super().__init__(
            [key for key, _ in fblocks], fblocks[0][1].shape[1], Enull.T @ F, Enull.T @ b
        )
