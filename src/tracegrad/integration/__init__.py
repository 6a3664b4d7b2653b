"""
Framework integration entry points.

Subpackages (imported on demand, each needs its optional extra):
- `torch`: conversions and reference gradients via PyTorch autograd.
- `jax`: conversions and reference gradients via `jax.grad`.
"""

__all__ = ["torch", "jax"]
