"""
Block Hessian factor over the cameras of a smart factor.
"""
from typing import List, Sequence

import numpy as np
from numpy import ndarray
from scipy.linalg import LinAlgError, cho_factor, cho_solve

from .base import LinearFactor
from ..errors import DegenerateReductionError
from ..schur import assemble_upper_blocks, num_upper_blocks, upper_block_index
from ..types.key import Key


class RegularHessianFactor(LinearFactor):
    """
    Quadratic factor 1/2 x'Hx - g'x + 1/2 f with H stored as its upper
    triangular DxD blocks G_ij (i <= j) in row-major order, g as m D-vectors
    and f the total squared whitened error at linearization.
    """

    def __init__(
        self,
        keys: Sequence[Key],
        Gs: Sequence[ndarray],
        gs: Sequence[ndarray],
        f: float,
    ):
        num_keys = len(keys)
        if num_keys == 0:
            raise ValueError("A Hessian factor needs at least one key")
        if len(Gs) != num_upper_blocks(num_keys):
            raise ValueError(
                f"Expected {num_upper_blocks(num_keys)} Hessian blocks for {num_keys} keys, got {len(Gs)}"
            )
        if len(gs) != num_keys:
            raise ValueError(f"Expected {num_keys} gradient blocks, got {len(gs)}")

        D = np.asarray(gs[0]).shape[0]
        super().__init__(keys, D)
        self._Gs: List[ndarray] = [np.array(G, dtype=float) for G in Gs]
        self._gs: List[ndarray] = [np.array(g, dtype=float).reshape(-1) for g in gs]
        self._f = float(f)

        for G in self._Gs:
            assert G.shape == (D, D), f"Hessian blocks must be {D}x{D}, got {G.shape}"
        for g in self._gs:
            assert g.shape == (D,), f"gradient blocks must have length {D}, got {g.shape}"

    def __repr__(self) -> str:
        keys = ", ".join(str(k) for k in self._keys)
        return f"RegularHessianFactor(keys=[{keys}], D={self.dim}, f={self._f:.6g})"

    @property
    def Gs(self) -> List[ndarray]:
        return [G.copy() for G in self._Gs]

    @property
    def gs(self) -> List[ndarray]:
        return [g.copy() for g in self._gs]

    def block(self, i: int, j: int) -> ndarray:
        """Hessian block (i, j); lower-triangle requests are served by transposition."""
        if i <= j:
            return self._Gs[upper_block_index(i, j, self.size)].copy()
        return self._Gs[upper_block_index(j, i, self.size)].T.copy()

    def information(self) -> ndarray:
        return assemble_upper_blocks(self._Gs, self.size)

    def linear_term(self) -> ndarray:
        return np.concatenate(self._gs)

    def constant_term(self) -> float:
        return self._f

    def augmented_information(self) -> ndarray:
        """Returns [[H, g], [g', f]]."""
        n = self.total_dim
        aug = np.zeros((n + 1, n + 1))
        aug[:n, :n] = self.information()
        g = self.linear_term()
        aug[:n, n] = g
        aug[n, :n] = g
        aug[n, n] = self._f
        return aug

    def multiply_hessian(self, x) -> ndarray:
        x = self._check_vector(x)
        D, m = self.dim, self.size
        y = np.zeros_like(x)
        for i in range(m):
            xi = x[i * D : (i + 1) * D]
            y[i * D : (i + 1) * D] += self._Gs[upper_block_index(i, i, m)] @ xi
            for j in range(i + 1, m):
                G = self._Gs[upper_block_index(i, j, m)]
                y[i * D : (i + 1) * D] += G @ x[j * D : (j + 1) * D]
                y[j * D : (j + 1) * D] += G.T @ xi
        return y

    def error(self, delta) -> float:
        x = self._check_vector(delta)
        return float(0.5 * x @ self.multiply_hessian(x) - self.linear_term() @ x + 0.5 * self._f)

    def hessian_diagonal(self) -> ndarray:
        m = self.size
        return np.concatenate(
            [np.diag(self._Gs[upper_block_index(i, i, m)]) for i in range(m)]
        )

    def hessian_block_diagonal(self) -> List[ndarray]:
        m = self.size
        return [self._Gs[upper_block_index(i, i, m)].copy() for i in range(m)]

    def solve(self) -> ndarray:
        """
        Gauss-Newton step: solves H x = g.

        Raises:
            DegenerateReductionError: H is not positive definite
        """
        try:
            factor = cho_factor(self.information())
        except LinAlgError as e:
            raise DegenerateReductionError(
                f"Reduced camera Hessian is not positive definite ({e})"
            ) from e
        return cho_solve(factor, self.linear_term())
