"""
Conversion utilities for arrays passed across the factor interfaces.
"""
import numpy as np
from typing import Mapping, Sequence, TYPE_CHECKING

if TYPE_CHECKING:
    from ..types.key import Key


def to_float_array(value) -> np.ndarray:
    """
    Copies any array-like into a float64 numpy array.

    Used as an attrs converter so stored arrays never alias caller data.
    """
    return np.array(value, dtype=np.float64)


def to_point3(point) -> np.ndarray:
    """
    Converts a landmark position to a finite (3,) float array.

    Raises:
        ValueError: the point does not have 3 finite coordinates
    """
    arr = np.asarray(point, dtype=np.float64).reshape(-1)
    if arr.shape != (3,):
        raise ValueError(f"Point must have 3 coordinates, got shape {arr.shape}")
    if not np.all(np.isfinite(arr)):
        raise ValueError(f"Point must be finite, got {arr}")
    return arr


def stack_key_vectors(
    keys: Sequence["Key"], vectors: Mapping["Key", np.ndarray], dim: int
) -> np.ndarray:
    """
    Stacks per-key vectors into one vector following the order of `keys`.

    Args:
        keys: the variable ordering
        vectors: mapping from key to a vector of length `dim`
        dim: the dimension of each variable

    Returns:
        the stacked vector of length len(keys) * dim

    Raises:
        ValueError: a key is repeated in `keys`, missing, or has the wrong size
    """
    if len(set(keys)) != len(keys):
        raise ValueError(
            f"Cannot address variables by key when keys repeat: {[str(k) for k in keys]}"
        )
    stacked = np.zeros(len(keys) * dim)
    for i, key in enumerate(keys):
        if key not in vectors:
            raise ValueError(f"Missing vector for key {key}")
        vec = np.asarray(vectors[key], dtype=np.float64).reshape(-1)
        if vec.shape != (dim,):
            raise ValueError(f"Vector for key {key} must have length {dim}, got {vec.shape}")
        stacked[i * dim : (i + 1) * dim] = vec
    return stacked


def split_key_vectors(keys: Sequence["Key"], stacked: np.ndarray, dim: int) -> dict:
    """
    Inverse of `stack_key_vectors`: splits a stacked vector into per-key vectors.
    """
    stacked = np.asarray(stacked, dtype=np.float64).reshape(-1)
    assert stacked.shape == (len(keys) * dim,), (
        f"stacked vector must have length {len(keys) * dim}, got {stacked.shape}"
    )
    return {key: stacked[i * dim : (i + 1) * dim].copy() for i, key in enumerate(keys)}
