"""Runtime settings for density-init.

Three things are configured here, all read from the environment on import:

  - ``DENSITY_INIT_LOGLEVEL``: level of the ``density_init`` logger.
  - ``DENSITY_INIT_GPU``: array backend for the vectorized element geometry
    (``cpu``, ``gpu`` or unset for auto-detection of CuPy).
  - ``DENSITY_INIT_SEED``: default seed of shuffled cross-validation folds.

`configure` changes the backend and seed for the rest of the process and
`use` does so only inside a ``with`` block.
"""

from __future__ import annotations

from dataclasses import dataclass
import contextlib
import logging
import os
from typing import Any, ContextManager, Iterator, Optional


_PACKAGE_LOGGER = logging.getLogger("density_init")
_LOGGER = logging.getLogger(__name__)

_DEFAULT_SEED = 1234
_GPU_WORDS = {"1", "true", "y", "yes", "on", "gpu"}
_CPU_WORDS = {"0", "false", "n", "no", "off", "cpu"}


def _parse_log_level(val: str | int | None, default: int = logging.WARNING) -> int:
    """Map a level name or number to a `logging` constant, else `default`."""
    if isinstance(val, int):
        return val
    if val is None:
        return default
    level = getattr(logging, str(val).strip().upper(), None)
    return level if isinstance(level, int) else default


def set_log_level(level: str | int = "WARNING") -> None:
    """Set the level of the ``density_init`` package logger.

    Args:
        level: A logging level name such as ``"DEBUG"`` or its integer value.
            Unknown names fall back to WARNING.
    """
    _PACKAGE_LOGGER.setLevel(_parse_log_level(level))


set_log_level(os.getenv("DENSITY_INIT_LOGLEVEL", "WARNING"))


def int_env(varname: str, default: int) -> int:
    """Integer value of environment variable `varname`, or `default` if unset."""
    return int(os.getenv(varname, str(default)))


def _device_env() -> str:
    """Device requested by DENSITY_INIT_GPU: 'gpu', 'cpu' or 'auto'."""
    raw = os.getenv("DENSITY_INIT_GPU", "").strip().lower()
    if raw in _GPU_WORDS:
        device = "gpu"
    elif raw in _CPU_WORDS:
        device = "cpu"
    else:
        device = "auto"
    _LOGGER.debug("DENSITY_INIT_GPU=%r selects device %s", raw, device)
    return device


@dataclass
class ArrayBackend:
    """Array module in use for element geometry, with its host transfer."""

    name: str
    is_gpu: bool
    xp: Any

    def to_cpu(self, a: Any) -> Any:
        """Return `a` as a NumPy array when it lives on the GPU."""
        if not self.is_gpu:
            return a
        import cupy as cp

        if isinstance(a, cp.ndarray):
            _LOGGER.debug("Copying %s array from GPU to host", getattr(a, "shape", None))
            return cp.asnumpy(a)
        return a


def _numpy_backend() -> ArrayBackend:
    import numpy as np

    _LOGGER.info("Array backend: NumPy (CPU)")
    return ArrayBackend(name="numpy", is_gpu=False, xp=np)


def _cupy_backend() -> ArrayBackend:
    """CuPy backend on the first visible CUDA device.

    Raises:
        RuntimeError: If CuPy sees no CUDA device.
    """
    import cupy as cp

    n_devices = cp.cuda.runtime.getDeviceCount()
    _LOGGER.debug("CuPy reports %d CUDA device(s)", n_devices)
    if n_devices < 1:
        raise RuntimeError("CuPy found no CUDA device")
    _LOGGER.info("Array backend: CuPy (GPU)")
    return ArrayBackend(name="cupy", is_gpu=True, xp=cp)


def _select_backend(device: str, *, strict: bool = False) -> ArrayBackend:
    """Backend for `device` ('cpu', 'gpu' or 'auto').

    A failed GPU start falls back to NumPy unless `strict` is set, in which
    case the CuPy error propagates.

    Raises:
        ValueError: If `device` is not one of the three names.
    """
    if device not in ("cpu", "gpu", "auto"):
        raise ValueError(f"device must be 'cpu', 'gpu' or 'auto'; got {device!r}")
    if device == "cpu":
        return _numpy_backend()
    try:
        return _cupy_backend()
    except Exception as err:
        if device == "auto":
            _LOGGER.info("No usable GPU (%r); staying on CPU.", err)
            return _numpy_backend()
        _LOGGER.error("GPU backend could not start: %r", err)
        if strict:
            raise
        _LOGGER.warning("Using the CPU backend instead.")
        return _numpy_backend()


class Config:
    """Process-wide backend and default fold seed."""

    def __init__(self) -> None:
        self._seed_default = int_env("DENSITY_INIT_SEED", _DEFAULT_SEED)
        device = _device_env()
        self._backend: ArrayBackend = _select_backend(device)
        _LOGGER.info(
            "density_init config: device=%s backend=%s seed=%d",
            device,
            self._backend.name,
            self._seed_default,
        )

    def configure(
        self,
        device: str = "auto",
        *,
        seed: Optional[int] = None,
        strict: bool = False,
    ) -> Config:
        """Switch to the backend for `device` and optionally reset the seed.

        Args:
            device: 'cpu', 'gpu' or 'auto'.
            seed: New default seed for shuffled folds; unchanged if None.
            strict: Propagate GPU start failures instead of using the CPU.

        Returns:
            This `Config`, so calls can be chained.
        """
        backend = _select_backend(device, strict=strict)
        self._backend = backend
        if seed is not None:
            self._seed_default = int(seed)
        _LOGGER.info(
            "density_init reconfigured: backend=%s seed=%d",
            backend.name,
            self._seed_default,
        )
        return self

    @contextlib.contextmanager
    def use(
        self,
        device: str,
        *,
        seed: Optional[int] = None,
        strict: bool = False,
    ) -> Iterator[None]:
        """`configure` for the duration of a ``with`` block, then restore."""
        saved = (self._backend, self._seed_default)
        try:
            self.configure(device=device, seed=seed, strict=strict)
            yield
        finally:
            self._backend, self._seed_default = saved
            _LOGGER.info("density_init backend restored to %s", self._backend.name)

    @property
    def default_seed(self) -> int:
        return self._seed_default

    @property
    def backend_name(self) -> str:
        """'numpy' or 'cupy'."""
        return self._backend.name

    @property
    def xp(self) -> Any:
        """Array module of the active backend."""
        return self._backend.xp

    def to_cpu(self, a: Any) -> Any:
        return self._backend.to_cpu(a)


class _XPProxy:
    """Stand-in for the array module that follows backend switches."""

    def __init__(self, cfg: Config) -> None:
        self._cfg = cfg

    def __getattr__(self, name: str) -> Any:
        return getattr(self._cfg.xp, name)


config = Config()
xp = _XPProxy(config)


def to_cpu(a: Any) -> Any:
    """Host copy of `a` under the active backend."""
    return config.to_cpu(a)


def backend_name() -> str:
    return config.backend_name


def default_seed() -> int:
    """Default seed of shuffled cross-validation folds."""
    return config.default_seed


def configure(
    device: str = "auto",
    *,
    seed: Optional[int] = None,
    strict: bool = False,
) -> Config:
    """Module-level `Config.configure` on the shared config."""
    return config.configure(device, seed=seed, strict=strict)


def use(
    device: str,
    *,
    seed: Optional[int] = None,
    strict: bool = False,
) -> ContextManager[None]:
    """Module-level `Config.use` on the shared config."""
    return config.use(device, seed=seed, strict=strict)
