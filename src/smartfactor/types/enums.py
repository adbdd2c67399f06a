"""
Enumerations for linearization modes and failure kinds.
"""
from enum import Enum


class LinearizationMode(Enum):
    """Which linearized representation a smart factor produces."""
    HESSIAN = 1
    IMPLICIT_SCHUR = 2
    JACOBIAN_Q = 3
    JACOBIAN_SVD = 4


class FailureKind(Enum):
    """Why a smart factor could not be linearized."""
    CHEIRALITY = 1
    DEGENERATE = 2
