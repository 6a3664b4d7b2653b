"""
PyTorch integration for tracegrad.

Exports:
- `to_tensor` / `from_tensor`: Matrix <-> torch.Tensor conversions.
- `reference_gradients`: autograd gradients used to cross-check procedures.
"""

from .bridge import from_tensor, reference_gradients, to_tensor

__all__ = ["from_tensor", "reference_gradients", "to_tensor"]
