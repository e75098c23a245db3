import pytest

from density_init.errors import InvalidInitMode, InvalidInitParameter, InvalidSearchStrategy
from density_init.locator import SearchStrategy
from density_init.parameters import (
    DEFAULT_HEAT_ITER,
    DEFAULT_HEAT_STEP,
    DiffusionConfig,
    InitMode,
)


def test_defaults():
    cfg = DiffusionConfig()
    assert cfg.heat_step == DEFAULT_HEAT_STEP == 0.1
    assert cfg.heat_iter == DEFAULT_HEAT_ITER == 500
    assert cfg.search is SearchStrategy.TREE


def test_search_is_parsed():
    assert DiffusionConfig(search="naive").search is SearchStrategy.NAIVE
    with pytest.raises(InvalidSearchStrategy):
        DiffusionConfig(search="bogus")


def test_integer_valued_float_iterations_are_accepted():
    cfg = DiffusionConfig(heat_iter=10.0)
    assert cfg.heat_iter == 10
    assert isinstance(cfg.heat_iter, int)


@pytest.mark.parametrize("heat_step", [0.0, -0.1, float("inf"), float("nan"), "x", None])
def test_invalid_heat_step(heat_step):
    with pytest.raises(InvalidInitParameter):
        DiffusionConfig(heat_step=heat_step)


@pytest.mark.parametrize("heat_iter", [-1, 2.5, True, "ten", None])
def test_invalid_heat_iter(heat_iter):
    with pytest.raises(InvalidInitParameter):
        DiffusionConfig(heat_iter=heat_iter)


def test_config_is_frozen():
    cfg = DiffusionConfig()
    with pytest.raises(AttributeError):
        cfg.heat_step = 1.0


@pytest.mark.parametrize(
    "value,expected",
    [("Heat", InitMode.HEAT), ("heat", InitMode.HEAT), ("CV", InitMode.CV), ("cv", InitMode.CV)],
)
def test_parse_init_mode(value, expected):
    assert InitMode.parse(value) is expected


@pytest.mark.parametrize("value", ["Gauss", "", None, 1])
def test_parse_init_mode_rejects_unknown(value):
    with pytest.raises(InvalidInitMode):
        InitMode.parse(value)
