from __future__ import annotations
import importlib
import logging

import numpy as np
import pytest

cfg_mod = importlib.import_module("density_init.config")
from density_init.config import (
    Config,
    configure,
    use,
    to_cpu,
    default_seed,
    int_env,
    backend_name,
    set_log_level,
    xp,
)


def test_int_env(monkeypatch):
    monkeypatch.setenv("TINT", "42")
    assert int_env("TINT", 0) == 42
    monkeypatch.delenv("TINT")
    assert int_env("TINT", 5) == 5


def test_config_cpu_backend():
    configure("cpu", seed=1234)
    a = xp.asarray([1, 2, 3], dtype=float)
    b = to_cpu(a)
    assert isinstance(b, np.ndarray)
    assert np.allclose(b, [1, 2, 3])
    assert backend_name() == "numpy"


def test_use_context_restores_backend_and_seed():
    configure("cpu", seed=1234)
    prev = backend_name()
    with use("cpu", seed=7):
        assert default_seed() == 7
    assert backend_name() == prev
    assert default_seed() == 1234


def test_configure_rejects_unknown_device():
    with pytest.raises(ValueError):
        configure("tpu")


def test_seed_from_environment(monkeypatch):
    monkeypatch.setenv("DENSITY_INIT_SEED", "77")
    monkeypatch.setenv("DENSITY_INIT_GPU", "cpu")
    c = Config()
    assert c.default_seed == 77
    assert c.backend_name == "numpy"


@pytest.mark.parametrize(
    "raw,expected",
    [("1", "gpu"), ("GPU", "gpu"), ("off", "cpu"), ("cpu", "cpu"), ("", "auto")],
)
def test_device_env_parsing(monkeypatch, raw, expected):
    monkeypatch.setenv("DENSITY_INIT_GPU", raw)
    assert cfg_mod._device_env() == expected


def test_set_log_level_on_package_logger():
    logger = logging.getLogger("density_init")
    prev = logger.level
    try:
        set_log_level("debug")
        assert logger.level == logging.DEBUG
        set_log_level("not-a-level")
        assert logger.level == logging.WARNING
    finally:
        logger.setLevel(prev)
