"""
Exceptions raised while linearizing smart factors.

Both kinds are recoverable: an optimizer can drop the factor for this
iteration or shrink its trust region and try again.
"""
from typing import Optional

from .types.enums import FailureKind
from .types.key import Key


class LinearizationError(RuntimeError):
    """Base class for failures to linearize a smart factor."""

    kind: Optional[FailureKind] = None


class CheiralityError(LinearizationError):
    """The landmark lies behind (or on the image plane of) an observing camera."""

    kind = FailureKind.CHEIRALITY

    def __init__(
        self,
        message: str,
        depth: Optional[float] = None,
        index: Optional[int] = None,
        key: Optional[Key] = None,
    ):
        super().__init__(message)
        self.depth = depth
        self.index = index
        self.key = key


class DegenerateReductionError(LinearizationError):
    """E'E plus damping is singular to working precision, so the point cannot be eliminated."""

    kind = FailureKind.DEGENERATE
