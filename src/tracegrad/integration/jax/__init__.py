"""
JAX integration helpers.
"""

from .bridge import from_array, reference_gradients, to_array

__all__ = ["from_array", "reference_gradients", "to_array"]
