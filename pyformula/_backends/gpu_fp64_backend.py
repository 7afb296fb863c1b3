"""
GPU backend using PyTorch with FP64 precision.

Aliasing is decided on the host with the same sequential check as the CPU
backend, so both backends drop the same columns; the factorisation and
solves run on the device.
"""

import numpy as np
import warnings
from typing import Optional

import torch

from .base import GPUBackendFP64, LinearModelResult, expand_coef
from .._core.qr import detect_aliased_columns


class PyTorchBackendFP64(GPUBackendFP64):
    """
    PyTorch GPU backend with FP64 precision.

    Only recommended for data center GPUs with full FP64 support.
    """

    def __init__(self, device: Optional[str] = None):
        """Initialize PyTorch FP64 backend."""
        self.name = "pytorch_fp64"
        self.precision = "fp64"
        self.torch = torch

        # Device selection (no Metal for FP64)
        if device == 'mps':
            raise RuntimeError(
                "FP64 not supported on Apple Metal. "
                "Use the CPU backend."
            )

        if device is None:
            if torch.cuda.is_available():
                device = 'cuda'
            else:
                warnings.warn("No CUDA GPU available, using CPU")
                device = 'cpu'

        self.device = torch.device(device)

    def fit_linear_model(
        self,
        X: np.ndarray,
        y: np.ndarray,
        weights: Optional[np.ndarray] = None,
        offset: Optional[np.ndarray] = None,
        tol: Optional[float] = None,
    ) -> LinearModelResult:
        """Fit linear model on GPU with FP64 precision."""
        if tol is None:
            tol = 1e-7
        X = np.asarray(X, dtype=np.float64)
        y = np.asarray(y, dtype=np.float64)
        n = len(y)

        # Convert to GPU tensors with FP64
        y_gpu = torch.from_numpy(y).to(self.device)
        X_gpu = torch.from_numpy(X).to(self.device)

        # Adjust for offset
        if offset is not None:
            offset_gpu = torch.from_numpy(np.asarray(offset, dtype=np.float64)).to(self.device)
            y_work = y_gpu - offset_gpu
        else:
            y_work = y_gpu.clone()

        # Handle weights
        if weights is not None:
            weights_gpu = torch.from_numpy(np.asarray(weights, dtype=np.float64)).to(self.device)
            good = weights_gpu > 0
            n_good = int(torch.sum(good).item())

            if n_good == 0:
                raise ValueError("All weights are zero")

            w_sqrt = torch.sqrt(weights_gpu[good])
            X_work = X_gpu[good, :] * w_sqrt.unsqueeze(1)
            y_work = y_work[good] * w_sqrt
        else:
            X_work = X_gpu
            n_good = n

        aliased = detect_aliased_columns(X_work.cpu().numpy(), tol=tol)
        kept = torch.from_numpy(np.flatnonzero(~aliased)).to(self.device)
        rank = len(kept)

        if rank > 0:
            Q, R = torch.linalg.qr(X_work[:, kept], mode='reduced')
            qty = Q.T @ y_work
            coef_active = torch.linalg.solve_triangular(
                R, qty.unsqueeze(1), upper=True
            ).squeeze(1)
            eye = torch.eye(rank, dtype=torch.float64, device=self.device)
            R_inv = torch.linalg.solve_triangular(R, eye, upper=True)
            cov_unscaled = R_inv @ R_inv.T
            fitted = X_gpu[:, kept] @ coef_active
        else:
            R = torch.empty((0, 0), dtype=torch.float64)
            coef_active = torch.empty(0, dtype=torch.float64)
            cov_unscaled = torch.empty((0, 0), dtype=torch.float64)
            fitted = torch.zeros(n, dtype=torch.float64, device=self.device)

        if offset is not None:
            fitted = fitted + offset_gpu
        residuals = y_gpu - fitted

        pivot = np.concatenate([np.flatnonzero(~aliased), np.flatnonzero(aliased)])

        # Convert to numpy
        return LinearModelResult(
            coef=expand_coef(coef_active.cpu().numpy(), aliased),
            residuals=residuals.cpu().numpy(),
            fitted_values=fitted.cpu().numpy(),
            rank=rank,
            df_residual=n_good - rank,
            qr_R=R.cpu().numpy(),
            qr_pivot=(pivot + 1).astype(np.int64),
            qr_tol=tol,
            aliased=aliased,
            cov_unscaled=cov_unscaled.cpu().numpy(),
        )

    def get_device_info(self) -> dict:
        """Get backend information."""
        return {
            'backend': 'gpu',
            'precision': 'fp64',
            'device': str(self.device),
            'library': f'PyTorch {torch.__version__}',
        }
