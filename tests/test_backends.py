"""Tests for backend selection and the device pool."""

import logging
import threading

import pytest
import torch

from purrscribe import backends
from purrscribe.backends import (
    ACCELERATOR_PRIORITY,
    BackendInit,
    BackendKind,
    BackendSelector,
    DevicePool,
    check_gpu_status,
    list_devices,
)
from purrscribe.errors import BackendInitError, ErrorCode

from conftest import cpu_only_selector, fake_accelerator


def _failing(message):
    def init(thread_count):
        raise BackendInitError(message)
    return init


class TestBackendKind:
    """Test the backend kind enumeration."""

    def test_priority_order(self):
        """Test accelerators are tried most specific first."""
        assert ACCELERATOR_PRIORITY == (BackendKind.CUDA, BackendKind.ROCM, BackendKind.MPS)

    def test_is_accelerator(self):
        """Test only CPU is not an accelerator."""
        assert not BackendKind.CPU.is_accelerator
        assert all(kind.is_accelerator for kind in ACCELERATOR_PRIORITY)


class TestBackendSelector:
    """Test the fallback chain."""

    def test_candidates(self):
        """Test the candidate list for each GPU preference."""
        selector = BackendSelector()
        assert selector.candidates(False) == [BackendKind.CPU]
        assert selector.candidates(True) == [
            BackendKind.CUDA,
            BackendKind.ROCM,
            BackendKind.MPS,
            BackendKind.CPU,
        ]

    def test_cpu_when_gpu_disabled(self):
        """Test that accelerators are never probed when GPU is disabled."""
        probed = []

        def probe(thread_count):
            probed.append(thread_count)
            return BackendInit(BackendKind.CUDA, "cuda:0")

        selector = BackendSelector(initializers={BackendKind.CUDA: probe}, pool=DevicePool())

        with selector.select(False, 2) as handle:
            assert handle.kind is BackendKind.CPU
            assert handle.name == "cpu"
            assert handle.thread_count == 2
        assert probed == []

    def test_fallback_to_cpu_when_gpu_unavailable(self, caplog):
        """Test unavailable accelerators fall back to CPU with warnings."""
        selector = cpu_only_selector()

        with caplog.at_level(logging.WARNING, logger="purrscribe.backends"):
            handle = selector.select(True, 1)

        assert handle.name == "cpu"
        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert len(warnings) == 3
        assert "cuda" in warnings[0].getMessage()
        handle.release()

    def test_first_working_accelerator_wins(self):
        """Test the chain stops at the first accelerator that initializes."""
        selector = BackendSelector(
            initializers={
                BackendKind.CUDA: _failing("no driver"),
                BackendKind.ROCM: fake_accelerator(BackendKind.ROCM),
                BackendKind.MPS: fake_accelerator(BackendKind.MPS, "mps"),
            },
            pool=DevicePool(),
        )

        with selector.select(True, 4) as handle:
            assert handle.kind is BackendKind.ROCM
            assert handle.device == "cuda:0"

    def test_non_backend_errors_fall_through(self):
        """Test that raw RuntimeError/OSError from probes are treated as unavailable."""
        def broken(thread_count):
            raise OSError("libcuda.so not found")

        selector = BackendSelector(
            initializers={
                BackendKind.CUDA: broken,
                BackendKind.ROCM: _failing("no rocm"),
                BackendKind.MPS: _failing("no mps"),
            },
            pool=DevicePool(),
        )

        with selector.select(True, 1) as handle:
            assert handle.kind is BackendKind.CPU

    def test_attribute_errors_fall_through(self):
        """Test that any accelerator initialization failure falls back to CPU."""
        def missing_mps(thread_count):
            raise AttributeError("module 'torch.backends' has no attribute 'mps'")

        selector = BackendSelector(
            initializers={kind: missing_mps for kind in ACCELERATOR_PRIORITY},
            pool=DevicePool(),
        )

        with selector.select(True, 1) as handle:
            assert handle.kind is BackendKind.CPU

    def test_cpu_import_error_is_wrapped(self):
        """Test a non-runtime CPU failure is still reported as BackendInitError."""
        def broken(thread_count):
            raise ImportError("torch C extension failed to load")

        selector = BackendSelector(initializers={BackendKind.CPU: broken}, pool=DevicePool())

        with pytest.raises(BackendInitError) as exc_info:
            selector.select(False, 1)

        assert exc_info.value.code is ErrorCode.CPU_INIT_FAILED
        assert isinstance(exc_info.value.__cause__, ImportError)

    def test_cpu_failure_is_fatal(self):
        """Test that CPU initialization failure raises BackendInitError."""
        selector = BackendSelector(
            initializers={
                **{kind: _failing("absent") for kind in ACCELERATOR_PRIORITY},
                BackendKind.CPU: _failing("cpu runtime broken"),
            },
            pool=DevicePool(),
        )

        with pytest.raises(BackendInitError) as exc_info:
            selector.select(True, 1)

        assert exc_info.value.code is ErrorCode.CPU_INIT_FAILED
        assert "cpu runtime broken" in str(exc_info.value)

    def test_busy_device_falls_through(self, caplog):
        """Test an exhausted device pool is reported as busy and skipped."""
        pool = DevicePool(capacity=1)
        selector = BackendSelector(
            initializers={
                BackendKind.CUDA: fake_accelerator(),
                BackendKind.ROCM: _failing("no rocm"),
                BackendKind.MPS: _failing("no mps"),
            },
            pool=pool,
        )

        first = selector.select(True, 1)
        with caplog.at_level(logging.WARNING, logger="purrscribe.backends"):
            second = selector.select(True, 1)

        assert first.kind is BackendKind.CUDA
        assert second.kind is BackendKind.CPU
        assert any("busy" in r.getMessage() for r in caplog.records)

        first.release()
        second.release()
        with selector.select(True, 1) as third:
            assert third.kind is BackendKind.CUDA

    def test_cpu_sets_thread_count_once(self, monkeypatch):
        """Test the process-wide thread count is applied by the first CPU run only."""
        applied = []
        monkeypatch.setattr(backends, "_cpu_threads", None)
        monkeypatch.setattr(torch, "set_num_threads", applied.append)

        with BackendSelector().select(False, 2) as first:
            assert first.kind is BackendKind.CPU
        with BackendSelector().select(False, 3) as second:
            assert "2 threads" in second.description

        assert applied == [2]


class TestBackendHandle:
    """Test handle release semantics."""

    def test_release_is_idempotent(self):
        """Test releasing twice returns the pool slot only once."""
        pool = DevicePool(capacity=2)
        selector = BackendSelector(initializers={BackendKind.CUDA: fake_accelerator()}, pool=pool)

        handle = selector.select(True, 1)
        assert pool.in_use("cuda:0") == 1

        handle.release()
        handle.release()

        assert handle.released
        assert pool.in_use("cuda:0") == 0

    def test_context_manager_releases_on_error(self):
        """Test the handle is released when the body raises."""
        pool = DevicePool()
        selector = BackendSelector(initializers={BackendKind.CUDA: fake_accelerator()}, pool=pool)

        with pytest.raises(ValueError):
            with selector.select(True, 1) as handle:
                raise ValueError("boom")

        assert handle.released
        assert pool.in_use("cuda:0") == 0

    def test_torch_device(self):
        """Test the torch device matches the device string."""
        with cpu_only_selector().select(False, 1) as handle:
            assert handle.torch_device == torch.device("cpu")


class TestDevicePool:
    """Test the bounded device pool."""

    def test_invalid_capacity(self):
        """Test that capacity must be positive."""
        with pytest.raises(ValueError, match="capacity must be positive"):
            DevicePool(capacity=0)

    def test_capacity_is_enforced(self):
        """Test acquisitions beyond capacity fail without blocking."""
        pool = DevicePool(capacity=2)

        assert pool.acquire("cuda:0")
        assert pool.acquire("cuda:0")
        assert not pool.acquire("cuda:0")
        assert pool.acquire("cuda:1")

        pool.release("cuda:0")
        assert pool.acquire("cuda:0")

    def test_lease_releases(self):
        """Test scoped leases return the slot on exit."""
        pool = DevicePool()

        with pool.lease("mps") as acquired:
            assert acquired
            assert pool.in_use("mps") == 1
        assert pool.in_use("mps") == 0

    def test_lease_waits_for_release(self):
        """Test a lease with a timeout gets the slot once it is freed."""
        pool = DevicePool()
        pool.acquire("cuda:0")
        timer = threading.Timer(0.05, pool.release, args=("cuda:0",))
        timer.start()
        try:
            with pool.lease("cuda:0", timeout=5.0) as acquired:
                assert acquired
        finally:
            timer.join()


class TestDeviceQueries:
    """Test accelerator status reporting."""

    def test_gpu_status_consistent(self):
        """Test that check_gpu_status agrees with torch."""
        status = check_gpu_status()

        assert status.mps_available == torch.backends.mps.is_available()
        assert (status.cuda_available or status.rocm_available) == torch.cuda.is_available()
        assert len(status.devices) == len(list_devices())

    @pytest.mark.skipif(not torch.cuda.is_available(), reason="CUDA not available")
    def test_list_cuda_devices(self):
        """Test that CUDA devices report memory."""
        devices = [d for d in list_devices() if d.kind is not BackendKind.MPS]
        assert len(devices) == torch.cuda.device_count()
        assert all(d.vram_total > 0 for d in devices)
