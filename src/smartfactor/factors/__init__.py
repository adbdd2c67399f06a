"""
Linearized factors produced by smart factors.
"""

from .base import LinearFactor
from .hessian import RegularHessianFactor
from .implicit_schur import ImplicitSchurFactor
from .jacobian import RegularJacobianFactor, JacobianFactorQ, JacobianFactorSVD

__all__ = [
    "LinearFactor",
    "RegularHessianFactor",
    "ImplicitSchurFactor",
    "RegularJacobianFactor",
    "JacobianFactorQ",
    "JacobianFactorSVD",
]
