"""
Utils package for smartfactor utility functions.
"""

__all__ = []

# Utilities are imported explicitly as needed to avoid namespace pollution
# Example usage:
#   from smartfactor.utils.transformations import skew
#   from smartfactor.utils.validation import _check_rotation_matrix
