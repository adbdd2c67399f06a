"""
Matrix-free Schur complement factor.

Keeps F (as blocks), E, Q and b and applies

    H x = F' (F x - E Q E' F x)

on demand, so conjugate-gradient style solvers never form H.
"""
from typing import List, Sequence, Tuple

import numpy as np
from numpy import ndarray

from .base import LinearFactor
from ..schur import assemble_upper_blocks, sparse_schur_complement
from ..types.key import Key


class ImplicitSchurFactor(LinearFactor):
    """
    Implicit Schur complement of one landmark over its observing cameras.
    """

    def __init__(
        self,
        fblocks: Sequence[Tuple[Key, ndarray]],
        E: ndarray,
        Q: ndarray,
        b: ndarray,
    ):
        if len(fblocks) == 0:
            raise ValueError("An implicit Schur factor needs at least one F block")
        num_keys = len(fblocks)
        assert E.shape == (2 * num_keys, 3), f"E must be {2 * num_keys}x3, got {E.shape}"
        assert Q.shape == (3, 3), f"Q must be 3x3, got {Q.shape}"
        assert b.shape == (2 * num_keys,), f"b must have length {2 * num_keys}, got {b.shape}"

        super().__init__([key for key, _ in fblocks], fblocks[0][1].shape[1])
        self._fblocks = [(key, np.array(Fi, dtype=float)) for key, Fi in fblocks]
        self._E = np.array(E, dtype=float)
        self._Q = np.array(Q, dtype=float)
        self._b = np.array(b, dtype=float)

    def __repr__(self) -> str:
        keys = ", ".join(str(k) for k in self._keys)
        return f"ImplicitSchurFactor(keys=[{keys}], D={self.dim})"

    @property
    def fblocks(self) -> List[Tuple[Key, ndarray]]:
        return [(key, Fi.copy()) for key, Fi in self._fblocks]

    @property
    def E(self) -> ndarray:
        return self._E.copy()

    @property
    def point_covariance(self) -> ndarray:
        return self._Q.copy()

    @property
    def b(self) -> ndarray:
        return self._b.copy()

    def _apply_f(self, x: ndarray) -> ndarray:
        D = self.dim
        Fx = np.zeros(2 * self.size)
        for i, (_, Fi) in enumerate(self._fblocks):
            Fx[2 * i : 2 * i + 2] = Fi @ x[i * D : (i + 1) * D]
        return Fx

    def _apply_f_transpose(self, e: ndarray) -> ndarray:
        D = self.dim
        y = np.zeros(self.total_dim)
        for i, (_, Fi) in enumerate(self._fblocks):
            y[i * D : (i + 1) * D] = Fi.T @ e[2 * i : 2 * i + 2]
        return y

    def _project(self, e: ndarray) -> ndarray:
        """Returns e - E Q E' e."""
        return e - self._E @ (self._Q @ (self._E.T @ e))

    def multiply_hessian(self, x) -> ndarray:
        x = self._check_vector(x)
        return self._apply_f_transpose(self._project(self._apply_f(x)))

    def multiply_hessian_transpose(self, x) -> ndarray:
        # H is symmetric
        return self.multiply_hessian(x)

    def linear_term(self) -> ndarray:
        return self._apply_f_transpose(self._project(self._b))

    def error(self, delta) -> float:
        """
        1/2 (F x - b)' (I - E Q E') (F x - b): the cost with the point
        eliminated.
        """
        x = self._check_vector(delta)
        e = self._apply_f(x) - self._b
        return float(0.5 * e @ self._project(e))

    def hessian_block_diagonal(self) -> List[ndarray]:
        blocks = []
        for i, (_, Fi) in enumerate(self._fblocks):
            Ei = self._E[2 * i : 2 * i + 2]
            blocks.append(Fi.T @ (Fi - Ei @ (self._Q @ (Ei.T @ Fi))))
        return blocks

    def hessian_diagonal(self) -> ndarray:
        return np.concatenate([np.diag(G) for G in self.hessian_block_diagonal()])

    def information(self) -> ndarray:
        Gs, _ = sparse_schur_complement(self._fblocks, self._E, self._Q, self._b)
        return assemble_upper_blocks(Gs, self.size)
