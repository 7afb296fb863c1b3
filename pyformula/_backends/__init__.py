"""
Backend selection and management.

Provides a unified interface for the CPU (NumPy/SciPy) backend and the
optional PyTorch FP64 backend.
"""

from .base import BackendBase, LinearModelResult
from .cpu_fp64_backend import CPUBackendFP64

# PyTorch is an optional extra ('pip install pyformula[gpu]')
try:
    from .gpu_fp64_backend import PyTorchBackendFP64
    PYTORCH_FP64_AVAILABLE = True
except ImportError:
    PYTORCH_FP64_AVAILABLE = False


def _cuda_available() -> bool:
    if not PYTORCH_FP64_AVAILABLE:
        return False
    import torch
    return bool(torch.cuda.is_available())


def get_backend(backend: str = 'cpu') -> BackendBase:
    """
    Get computational backend.

    Parameters
    ----------
    backend : str
        Backend selection:
        - 'auto': PyTorch when a CUDA GPU is available, otherwise CPU
        - 'cpu': CPU with NumPy (FP64, R-compatible)
        - 'pytorch': Force PyTorch FP64

    Returns
    -------
    BackendBase
        Backend instance

    Examples
    --------
    >>> backend = get_backend('cpu')
    >>> backend.name
    'cpu_fp64'
    """
    if isinstance(backend, BackendBase):
        return backend

    if backend == 'auto':
        if _cuda_available():
            return PyTorchBackendFP64()
        return CPUBackendFP64()

    elif backend == 'cpu':
        return CPUBackendFP64()

    elif backend == 'pytorch':
        if not PYTORCH_FP64_AVAILABLE:
            raise RuntimeError(
                "PyTorch backend unavailable.\n"
                "Install: pip install torch"
            )
        return PyTorchBackendFP64()

    else:
        raise ValueError(
            f"Unknown backend: '{backend}'\n"
            f"Valid options: 'auto', 'cpu', 'pytorch'"
        )


def list_available_backends() -> list:
    """List names of available backends."""
    backends = ['cpu']
    if PYTORCH_FP64_AVAILABLE:
        backends.append('pytorch')
    return backends


# Export main interface
__all__ = [
    'get_backend',
    'list_available_backends',
    'BackendBase',
    'LinearModelResult',
    'CPUBackendFP64',
    'PYTORCH_FP64_AVAILABLE',
]
