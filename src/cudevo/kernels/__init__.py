"""Built-in algorithm kernels (``init``, ``mutate``, ``select``).

The CUDA kernels are imported lazily by the CUDA backend so the host backend
works without compiling device code.
"""

from cudevo.kernels import host_kernels

__all__ = ["host_kernels"]
