"""
Test backend implementations.

- CPU: Always tested
- PyTorch FP64: Tested if a CUDA GPU is available
"""

import pytest
import numpy as np

from pyformula import lm
from pyformula._backends import (
    PYTORCH_FP64_AVAILABLE,
    BackendBase,
    get_backend,
    list_available_backends,
)
from pyformula._core.qr import detect_aliased_columns, qr_decomposition_with_pivoting


if PYTORCH_FP64_AVAILABLE:
    import torch
    HAS_CUDA = torch.cuda.is_available()
else:
    HAS_CUDA = False


def _with_intercept(X):
    return np.column_stack([np.ones(X.shape[0]), X])


class TestBackendSelection:
    """Test backend availability and lookup."""

    def test_list_backends(self):
        """CPU is always available."""
        backends = list_available_backends()
        assert isinstance(backends, list)
        assert 'cpu' in backends
        if PYTORCH_FP64_AVAILABLE:
            assert 'pytorch' in backends

    def test_auto_backend_selects_something(self):
        """Auto selection returns a usable backend."""
        backend = get_backend('auto')
        assert isinstance(backend, BackendBase)
        if not HAS_CUDA:
            assert backend.name == 'cpu_fp64'

    def test_instance_passes_through(self):
        """A backend instance is returned unchanged."""
        backend = get_backend('cpu')
        assert get_backend(backend) is backend

    def test_invalid_backend_name(self):
        """Unknown names are rejected."""
        with pytest.raises(ValueError, match="Unknown backend"):
            get_backend('invalid_backend')

    @pytest.mark.skipif(PYTORCH_FP64_AVAILABLE, reason="Test requires PyTorch to be absent")
    def test_pytorch_without_torch(self):
        """Requesting PyTorch without the gpu extra fails clearly."""
        with pytest.raises(RuntimeError, match="pip install torch"):
            get_backend('pytorch')


class TestCPUBackend:
    """Test CPU backend (always available)."""

    def test_cpu_backend_creation(self):
        """The CPU backend reports FP64 precision."""
        backend = get_backend('cpu')
        assert backend.name == 'cpu_fp64'
        assert backend.precision == 'fp64'

    def test_cpu_device_info(self):
        """Device info names the CPU backend."""
        info = get_backend('cpu').get_device_info()
        assert info['backend'] == 'cpu'
        assert info['precision'] == 'fp64'

    def test_cpu_simple_regression(self):
        """Well-conditioned regression recovers the coefficients."""
        backend = get_backend('cpu')

        rng = np.random.default_rng(42)
        n, p = 100, 3
        X = rng.standard_normal((n, p))
        beta_true = np.array([1.0, 2.0, -1.5])
        y = 0.5 + X @ beta_true + 0.1 * rng.standard_normal(n)

        result = backend.fit_linear_model(_with_intercept(X), y)

        assert result.coef.shape == (p + 1,)
        assert result.residuals.shape == (n,)
        assert result.rank == p + 1
        assert result.df_residual == n - p - 1
        np.testing.assert_allclose(result.coef[1:], beta_true, atol=0.1)

        expected, *_ = np.linalg.lstsq(_with_intercept(X), y, rcond=None)
        np.testing.assert_allclose(result.coef, expected, rtol=1e-10)

    def test_cpu_unscaled_covariance(self):
        """cov_unscaled is the inverse cross-product."""
        backend = get_backend('cpu')
        rng = np.random.default_rng(0)
        X = _with_intercept(rng.standard_normal((40, 2)))
        result = backend.fit_linear_model(X, rng.standard_normal(40))
        np.testing.assert_allclose(result.cov_unscaled, np.linalg.inv(X.T @ X), rtol=1e-10)

    def test_cpu_weighted_regression(self):
        """Zero-weight rows do not count towards the residual df."""
        backend = get_backend('cpu')

        rng = np.random.default_rng(42)
        n = 50
        X = _with_intercept(rng.standard_normal((n, 2)))
        y = rng.standard_normal(n)
        weights = rng.uniform(0.5, 1.5, n)
        weights[:5] = 0.0

        result = backend.fit_linear_model(X, y, weights=weights)

        sw = np.sqrt(weights)
        expected, *_ = np.linalg.lstsq(X * sw[:, None], y * sw, rcond=None)
        np.testing.assert_allclose(result.coef, expected, rtol=1e-10)
        assert result.df_residual == n - 5 - 3
        assert result.residuals.shape == (n,)

    def test_cpu_with_offset(self):
        """Fitted values include the offset."""
        backend = get_backend('cpu')

        rng = np.random.default_rng(42)
        n = 50
        X = _with_intercept(rng.standard_normal((n, 2)))
        y = rng.standard_normal(n)
        offset = rng.standard_normal(n)

        result = backend.fit_linear_model(X, y, offset=offset)
        plain = backend.fit_linear_model(X, y - offset)

        np.testing.assert_allclose(result.coef, plain.coef)
        np.testing.assert_allclose(result.fitted_values, plain.fitted_values + offset)

    def test_cpu_aliased_column(self):
        """The rightmost dependent column is dropped with a NaN coefficient."""
        backend = get_backend('cpu')
        rng = np.random.default_rng(3)
        x = rng.standard_normal(30)
        z = rng.standard_normal(30)
        X = np.column_stack([np.ones(30), x, z, 2.0 * x - z])
        y = rng.standard_normal(30)

        result = backend.fit_linear_model(X, y)

        assert result.aliased.tolist() == [False, False, False, True]
        assert np.isnan(result.coef[3])
        assert result.rank == 3
        assert result.df_residual == 27
        assert result.cov_unscaled.shape == (3, 3)

    def test_all_weights_zero(self):
        """All-zero weights leave nothing to fit."""
        backend = get_backend('cpu')
        X = _with_intercept(np.arange(4.0)[:, None])
        with pytest.raises(ValueError, match="zero"):
            backend.fit_linear_model(X, np.ones(4), weights=np.zeros(4))


class TestLimitedPivoting:
    """QR with R-style limited pivoting."""

    def test_rightmost_member_dropped(self):
        """Of two proportional columns the later one is aliased."""
        x = np.arange(6.0)
        X = np.column_stack([np.ones(6), 3.0 * x, x])
        assert detect_aliased_columns(X).tolist() == [False, False, True]

    def test_zero_column(self):
        """An all-zero column is aliased."""
        X = np.column_stack([np.ones(4), np.zeros(4), np.arange(4.0)])
        assert detect_aliased_columns(X).tolist() == [False, True, False]

    def test_pivot_is_one_indexed(self):
        """Aliased columns are pivoted last, R-style 1-indexed."""
        x = np.arange(5.0)
        X = np.column_stack([np.ones(5), 2.0 * np.ones(5), x])
        decomp = qr_decomposition_with_pivoting(X)
        assert decomp.pivot.tolist() == [1, 3, 2]
        assert decomp.rank == 2
        np.testing.assert_allclose(decomp.Q @ decomp.R, X[:, [0, 2]], atol=1e-12)

    def test_nearly_dependent_column_kept_above_tolerance(self):
        """The tolerance decides near dependence."""
        x = np.linspace(0, 1, 20)
        X = np.column_stack([np.ones(20), x, x + 1e-4 * x ** 2])
        assert not detect_aliased_columns(X, tol=1e-7).any()
        assert detect_aliased_columns(X, tol=1e-3)[2]


@pytest.mark.skipif(not HAS_CUDA, reason="NVIDIA GPU not available")
class TestPyTorchBackend:
    """Test PyTorch FP64 backend (CUDA GPUs only)."""

    def test_pytorch_backend_creation(self):
        """The PyTorch backend reports FP64 precision."""
        backend = get_backend('pytorch')
        assert backend.name == 'pytorch_fp64'
        assert backend.precision == 'fp64'

    def test_pytorch_device_info(self):
        """Device info names the CUDA device."""
        info = get_backend('pytorch').get_device_info()
        assert info['backend'] == 'gpu'
        assert 'cuda' in str(info['device']).lower()

    def test_pytorch_vs_cpu_consistency(self):
        """Same coefficients, residuals and aliasing as the CPU backend."""
        rng = np.random.default_rng(42)
        x = rng.standard_normal(100)
        X = np.column_stack([np.ones(100), x, rng.standard_normal(100), 2.0 * x])
        y = rng.standard_normal(100)

        cpu_result = get_backend('cpu').fit_linear_model(X, y)
        gpu_result = get_backend('pytorch').fit_linear_model(X, y)

        np.testing.assert_allclose(gpu_result.coef, cpu_result.coef, rtol=1e-10)
        np.testing.assert_allclose(gpu_result.residuals, cpu_result.residuals, atol=1e-10)
        np.testing.assert_array_equal(gpu_result.aliased, cpu_result.aliased)

    def test_pytorch_rejects_mps(self):
        """Apple Metal has no FP64 support."""
        from pyformula._backends.gpu_fp64_backend import PyTorchBackendFP64
        with pytest.raises(RuntimeError, match="Metal"):
            PyTorchBackendFP64(device='mps')

    def test_formula_fit_on_gpu(self, crickets):
        """Formula fits agree across backends."""
        gpu = lm("rate ~ temp * species", crickets, backend='pytorch')
        cpu = lm("rate ~ temp * species", crickets, backend='cpu')
        np.testing.assert_allclose(gpu.coefficients, cpu.coefficients, rtol=1e-10)
