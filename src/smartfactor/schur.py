"""
Point elimination for smart factors.

Given the whitened, stacked system of one landmark seen by m cameras

    [ F'F  F'E ] [dc]   [F'b]
    [ E'F  E'E ] [dp] = [E'b]

the point update dp is eliminated with the Schur complement, leaving

    H = F'F - F'E Q E'F
    g = F'b - F'E Q E'b,    Q = (E'E + lambda * D)^-1

over the camera variables only. F is block diagonal with one 2xD block per
measurement, which the sparse variant exploits.
"""
from typing import List, Sequence, Tuple

import numpy as np
from numpy import ndarray
from scipy.linalg import LinAlgError, cho_factor, cho_solve, eigvalsh, svd

from .errors import DegenerateReductionError
from .types.key import Key
from .utils.validation import _check_lambda

FBlocks = Sequence[Tuple[Key, ndarray]]

# smallest eigenvalue of E'E + lambda * D, relative to the largest, below which
# the point is treated as unobservable
DEGENERATE_RCOND = 1e-12


def num_upper_blocks(num_keys: int) -> int:
    """Number of blocks in the upper triangle (diagonal included) of an m x m block matrix."""
    return num_keys * (num_keys + 1) // 2


def upper_block_index(i: int, j: int, num_keys: int) -> int:
    """
    Position of block (i, j), i <= j, in the row-major upper-triangular order
    G00, G01, ..., G0(m-1), G11, ...
    """
    assert 0 <= i <= j < num_keys, f"block ({i}, {j}) is not in the upper triangle of {num_keys} blocks"
    return i * num_keys - i * (i - 1) // 2 + (j - i)


def point_covariance(
    E: ndarray, lambda_: float = 0.0, diagonal_damping: bool = False
) -> ndarray:
    """
    Computes Q = (E'E + lambda * D)^-1 with a Cholesky solve.

    Args:
        E: the whitened point Jacobian (2m x 3)
        lambda_: Levenberg damping, >= 0
        diagonal_damping: damp with diag(E'E) instead of the identity

    Returns:
        the symmetric 3x3 point covariance

    Raises:
        DegenerateReductionError: E'E + lambda * D is not positive definite
            or its reciprocal condition number is below DEGENERATE_RCOND
    """
    _check_lambda(lambda_)
    EtE = E.T @ E
    if diagonal_damping:
        damping = np.diag(np.diag(EtE))
    else:
        damping = np.eye(EtE.shape[0])

    A = EtE + lambda_ * damping
    try:
        factor = cho_factor(A, lower=False)
    except LinAlgError as e:
        raise DegenerateReductionError(
            f"Cannot eliminate the point: E'E + {lambda_} * D is not positive definite ({e})"
        ) from e

    eigenvalues = eigvalsh(A)
    if eigenvalues[0] <= DEGENERATE_RCOND * eigenvalues[-1]:
        raise DegenerateReductionError(
            f"Cannot eliminate the point: E'E + {lambda_} * D is singular to working precision "
            f"(eigenvalues {eigenvalues.tolist()})"
        )
    Q = cho_solve(factor, np.eye(EtE.shape[0]))
    return 0.5 * (Q + Q.T)


def left_null_space(E: ndarray) -> ndarray:
    """
    Orthonormal basis of the null space of E': the last 2m - 3 left singular
    vectors of E.

    Args:
        E: the point Jacobian (2m x 3), m >= 2

    Returns:
        Enull with shape (2m, 2m - 3)

    Raises:
        ValueError: E has fewer than four rows
        DegenerateReductionError: E does not have full column rank
    """
    rows, cols = E.shape
    if rows <= cols:
        raise ValueError(
            f"The null space of E' needs more rows than columns, got E with shape {E.shape}"
        )
    U, s, _ = svd(E, full_matrices=True)
    if s[-1] ** 2 <= DEGENERATE_RCOND * s[0] ** 2:
        raise DegenerateReductionError(
            f"Cannot eliminate the point: E is rank deficient (singular values {s.tolist()})"
        )
    return U[:, cols:]


def build_full_f(fblocks: FBlocks) -> ndarray:
    """Materializes the block-diagonal camera Jacobian F (2m x Dm)."""
    num_keys = len(fblocks)
    D = fblocks[0][1].shape[1]
    F = np.zeros((2 * num_keys, D * num_keys))
    for i, (_, Fi) in enumerate(fblocks):
        F[2 * i : 2 * i + 2, D * i : D * (i + 1)] = Fi
    return F


def schur_complement(
    fblocks: FBlocks, E: ndarray, Q: ndarray, b: ndarray
) -> Tuple[List[ndarray], List[ndarray]]:
    """
    Dense Schur complement: forms H and g with the full F, then slices them
    into the upper-triangular blocks.

    Returns:
        (Gs, gs): m(m+1)/2 DxD blocks and m D-vectors
    """
    num_keys = len(fblocks)
    D = fblocks[0][1].shape[1]
    F = build_full_f(fblocks)

    H = F.T @ (F - E @ (Q @ (E.T @ F)))
    g = F.T @ (b - E @ (Q @ (E.T @ b)))

    Gs = []
    gs = []
    for i1 in range(num_keys):
        gs.append(g[i1 * D : (i1 + 1) * D].copy())
        for i2 in range(i1, num_keys):
            Gs.append(H[i1 * D : (i1 + 1) * D, i2 * D : (i2 + 1) * D].copy())
    return Gs, gs


def sparse_schur_complement(
    fblocks: FBlocks, E: ndarray, Q: ndarray, b: ndarray
) -> Tuple[List[ndarray], List[ndarray]]:
    """
    Blockwise Schur complement. Never forms F; every product is between
    2xD, 2x3, 3x3 and 2x2 blocks.

    Returns:
        (Gs, gs): m(m+1)/2 DxD blocks and m D-vectors
    """
    num_keys = len(fblocks)
    Gs: List[ndarray] = [None] * num_upper_blocks(num_keys)  # type: ignore
    gs: List[ndarray] = [None] * num_keys  # type: ignore

    count = 0
    for i1 in range(num_keys):
        Fi1 = fblocks[i1][1]
        Ei1_Q = E[2 * i1 : 2 * i1 + 2] @ Q
        gs[i1] = Fi1.T @ b[2 * i1 : 2 * i1 + 2]

        for i2 in range(num_keys):
            Fi2 = fblocks[i2][1]
            # (2x2) = (2x3) * (3x3) * (3x2)
            E_Q_Et = Ei1_Q @ E[2 * i2 : 2 * i2 + 2].T

            gs[i1] = gs[i1] - Fi1.T @ (E_Q_Et @ b[2 * i2 : 2 * i2 + 2])

            if i2 == i1:
                Gs[count] = Fi1.T @ (Fi1 - E_Q_Et @ Fi2)
                count += 1
            elif i2 > i1:
                Gs[count] = -Fi1.T @ (E_Q_Et @ Fi2)
                count += 1
    return Gs, gs


def assemble_upper_blocks(Gs: Sequence[ndarray], num_keys: int) -> ndarray:
    """Builds the dense symmetric matrix from its upper-triangular blocks."""
    D = Gs[0].shape[0]
    H = np.zeros((D * num_keys, D * num_keys))
    for i in range(num_keys):
        for j in range(i, num_keys):
            G = Gs[upper_block_index(i, j, num_keys)]
            H[i * D : (i + 1) * D, j * D : (j + 1) * D] = G
            if j != i:
                H[j * D : (j + 1) * D, i * D : (i + 1) * D] = G.T
    return H
