"""Compute backend selection with CPU fallback.

Backends are a small ordered list of kinds, each with an initializer that
either returns a ``BackendInit`` or raises. The selector walks the list in a
fixed priority order (accelerators first when GPU use is requested, CPU
last) and returns the first backend that initializes. Accelerator devices
are shared between concurrent runs through a bounded ``DevicePool``.
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, Iterator, List, Mapping, Optional

import torch

from .errors import BackendInitError, ErrorCode

logger = logging.getLogger(__name__)


class BackendKind(str, Enum):
    """Compute backend families, most specific first."""
    CUDA = "cuda"
    ROCM = "rocm"
    MPS = "mps"
    CPU = "cpu"

    @property
    def is_accelerator(self) -> bool:
        return self is not BackendKind.CPU


ACCELERATOR_PRIORITY = (BackendKind.CUDA, BackendKind.ROCM, BackendKind.MPS)


@dataclass(frozen=True)
class BackendInit:
    """Uniform result of a successful backend initialization.

    Attributes:
        kind: Backend family
        device: torch device string ("cuda:0", "mps", "cpu")
        description: Human readable device name
    """
    kind: BackendKind
    device: str
    description: str = ""


Initializer = Callable[[int], BackendInit]


def _init_cuda(thread_count: int) -> BackendInit:
    if not torch.cuda.is_available():
        raise BackendInitError("CUDA driver or device not available")
    if getattr(torch.version, "hip", None):
        raise BackendInitError("torch is built for ROCm, not CUDA")
    return BackendInit(BackendKind.CUDA, "cuda:0", torch.cuda.get_device_name(0))


def _init_rocm(thread_count: int) -> BackendInit:
    if not getattr(torch.version, "hip", None):
        raise BackendInitError("torch is not built with ROCm support")
    if not torch.cuda.is_available():
        raise BackendInitError("ROCm device not available")
    return BackendInit(BackendKind.ROCM, "cuda:0", torch.cuda.get_device_name(0))


def _init_mps(thread_count: int) -> BackendInit:
    if not torch.backends.mps.is_available():
        raise BackendInitError("Metal (MPS) device not available")
    return BackendInit(BackendKind.MPS, "mps", "Apple Metal")


_cpu_threads_lock = threading.Lock()
_cpu_threads: Optional[int] = None


def _apply_cpu_threads(thread_count: int) -> int:
    """Set the torch intra-op thread count once per process.

    ``torch.set_num_threads`` is process-wide, so concurrent runs asking for
    different counts would overwrite each other. The first request wins and
    later ones reuse it.

    Returns:
        Thread count actually in effect
    """
    global _cpu_threads
    with _cpu_threads_lock:
        if _cpu_threads is None:
            torch.set_num_threads(thread_count)
            _cpu_threads = thread_count
        elif _cpu_threads != thread_count:
            logger.debug(
                f"CPU thread count already set to {_cpu_threads} for this process, "
                f"ignoring request for {thread_count}"
            )
        return _cpu_threads


def _init_cpu(thread_count: int) -> BackendInit:
    thread_count = _apply_cpu_threads(thread_count)
    # Fails loudly if the torch CPU runtime itself is broken.
    torch.zeros(1)
    return BackendInit(BackendKind.CPU, "cpu", f"CPU ({thread_count} threads)")


DEFAULT_INITIALIZERS: Dict[BackendKind, Initializer] = {
    BackendKind.CUDA: _init_cuda,
    BackendKind.ROCM: _init_rocm,
    BackendKind.MPS: _init_mps,
    BackendKind.CPU: _init_cpu,
}


class DevicePool:
    """Bounded pool of accelerator slots shared by concurrent runs.

    Each device string gets ``capacity`` slots. Acquisition is scoped and
    slots are returned when the owning BackendHandle is released.
    """

    def __init__(self, capacity: int = 1):
        if capacity < 1:
            raise ValueError(f"capacity must be positive, got {capacity}")
        self.capacity = capacity
        self._lock = threading.Lock()
        self._slots: Dict[str, threading.BoundedSemaphore] = {}
        self._in_use: Dict[str, int] = {}

    def _semaphore(self, device: str) -> threading.BoundedSemaphore:
        with self._lock:
            if device not in self._slots:
                self._slots[device] = threading.BoundedSemaphore(self.capacity)
                self._in_use[device] = 0
            return self._slots[device]

    def acquire(self, device: str, timeout: Optional[float] = 0.0) -> bool:
        """Take a slot on ``device``; False if none freed up within ``timeout``."""
        semaphore = self._semaphore(device)
        if timeout is not None and timeout <= 0:
            acquired = semaphore.acquire(blocking=False)
        else:
            acquired = semaphore.acquire(timeout=timeout)
        if acquired:
            with self._lock:
                self._in_use[device] += 1
        return acquired

    def release(self, device: str) -> None:
        semaphore = self._semaphore(device)
        with self._lock:
            self._in_use[device] -= 1
        semaphore.release()

    def in_use(self, device: str) -> int:
        with self._lock:
            return self._in_use.get(device, 0)

    @contextmanager
    def lease(self, device: str, timeout: Optional[float] = None) -> Iterator[bool]:
        acquired = self.acquire(device, timeout)
        try:
            yield acquired
        finally:
            if acquired:
                self.release(device)


class BackendHandle:
    """Exclusive ownership of an initialized compute context for one run.

    Attributes:
        kind: Backend family actually selected
        device: torch device string
        thread_count: CPU threads the run may use
        description: Human readable device name
    """

    def __init__(
        self,
        init: BackendInit,
        thread_count: int,
        pool: Optional[DevicePool] = None,
    ):
        self.kind = init.kind
        self.device = init.device
        self.description = init.description
        self.thread_count = thread_count
        self._pool = pool
        self._released = False

    @property
    def name(self) -> str:
        return self.kind.value

    @property
    def released(self) -> bool:
        return self._released

    @property
    def torch_device(self) -> torch.device:
        return torch.device(self.device)

    def release(self) -> None:
        """Free the compute context. Safe to call more than once."""
        if self._released:
            return
        self._released = True
        try:
            if self.kind in (BackendKind.CUDA, BackendKind.ROCM) and torch.cuda.is_available():
                torch.cuda.empty_cache()
            elif self.kind is BackendKind.MPS and torch.backends.mps.is_available():
                torch.mps.empty_cache()
        finally:
            if self._pool is not None and self.kind.is_accelerator:
                self._pool.release(self.device)
        logger.debug(f"Released backend '{self.name}' ({self.device})")

    def __enter__(self) -> "BackendHandle":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    def __repr__(self) -> str:
        return f"BackendHandle(kind={self.name!r}, device={self.device!r}, released={self._released})"


SHARED_DEVICE_POOL = DevicePool(capacity=1)


class BackendSelector:
    """Chooses a compute backend, falling back to CPU.

    Attributes:
        initializers: Initializer per backend kind
        pool: Device pool accelerator slots are taken from
        acquire_timeout: Seconds to wait for a busy accelerator
    """

    def __init__(
        self,
        initializers: Optional[Mapping[BackendKind, Initializer]] = None,
        pool: Optional[DevicePool] = None,
        acquire_timeout: Optional[float] = 0.0,
    ):
        merged = dict(DEFAULT_INITIALIZERS)
        if initializers:
            merged.update(initializers)
        self.initializers = merged
        self.pool = pool if pool is not None else SHARED_DEVICE_POOL
        self.acquire_timeout = acquire_timeout

    def candidates(self, gpu_enabled: bool) -> List[BackendKind]:
        """Backend kinds tried, in order, for the given GPU preference."""
        if gpu_enabled:
            return [*ACCELERATOR_PRIORITY, BackendKind.CPU]
        return [BackendKind.CPU]

    def select(self, gpu_enabled: bool, thread_count: int) -> BackendHandle:
        """Initialize the first available backend.

        Returns:
            BackendHandle owning the selected compute context

        Raises:
            BackendInitError: If even the CPU backend fails to initialize
        """
        for kind in self.candidates(gpu_enabled):
            initializer = self.initializers[kind]
            try:
                init = initializer(thread_count)
            except Exception as e:
                # Partial torch builds fail with AttributeError or ImportError.
                if kind is BackendKind.CPU:
                    raise BackendInitError(
                        f"CPU backend failed to initialize: {e}",
                        ErrorCode.CPU_INIT_FAILED,
                    ) from e
                logger.warning(f"Backend '{kind.value}' unavailable, trying next: {e}")
                continue

            if kind.is_accelerator and not self.pool.acquire(init.device, self.acquire_timeout):
                logger.warning(
                    f"Backend '{kind.value}' device {init.device} is busy, trying next"
                )
                continue

            pool = self.pool if kind.is_accelerator else None
            logger.info(f"Selected backend '{kind.value}': {init.description}")
            return BackendHandle(init, thread_count, pool)

        # CPU is always the last candidate and either returns or raises.
        raise BackendInitError("no backend candidates", ErrorCode.CPU_INIT_FAILED)


@dataclass(frozen=True)
class DeviceInfo:
    """Accelerator device description."""
    id: int
    name: str
    kind: BackendKind
    vram_total: int = 0
    vram_free: int = 0


@dataclass(frozen=True)
class GpuStatus:
    """Accelerator availability on this machine."""
    cuda_available: bool
    rocm_available: bool
    mps_available: bool
    devices: List[DeviceInfo] = field(default_factory=list)


def list_devices() -> List[DeviceInfo]:
    """List accelerator devices visible to torch."""
    devices: List[DeviceInfo] = []
    if torch.cuda.is_available():
        kind = BackendKind.ROCM if getattr(torch.version, "hip", None) else BackendKind.CUDA
        for i in range(torch.cuda.device_count()):
            free, total = torch.cuda.mem_get_info(i)
            devices.append(
                DeviceInfo(
                    id=i,
                    name=torch.cuda.get_device_name(i),
                    kind=kind,
                    vram_total=int(total),
                    vram_free=int(free),
                )
            )
    if torch.backends.mps.is_available():
        devices.append(DeviceInfo(id=0, name="Apple Metal", kind=BackendKind.MPS))
    return devices


def check_gpu_status() -> GpuStatus:
    """Report which accelerator families are usable."""
    devices = list_devices()
    hip = bool(getattr(torch.version, "hip", None))
    return GpuStatus(
        cuda_available=torch.cuda.is_available() and not hip,
        rocm_available=torch.cuda.is_available() and hip,
        mps_available=torch.backends.mps.is_available(),
        devices=devices,
    )
