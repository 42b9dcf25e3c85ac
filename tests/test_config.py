import pytest

import robTomas.config as config
from robTomas.config import current_config


def test_defaults_match_module_settings():
    cfg = current_config()
    assert cfg.rob_size == config.ROB_SIZE
    assert cfg.rs_counts == {"ADD": 2, "MUL": 2, "LOAD": 2, "STORE": 1}
    assert cfg.register_names == tuple(f"R{i}" for i in range(8))
    assert cfg.latency("MUL") == 4
    assert cfg.branch_predictor == "2-bit"


def test_overrides_win_over_globals():
    cfg = current_config(rob_size=4, branch_predictor="always-taken", latencies={"ADD": 5})
    assert cfg.rob_size == 4
    assert cfg.branch_predictor == "always-taken"
    assert cfg.latency("ADD") == 5
    assert cfg.latency("SUB") == 2


def test_set_fu_config_applies_to_new_machines(monkeypatch):
    monkeypatch.setattr(config, "FU_CONFIG", config.FU_CONFIG)
    config.set_fu_config({"ADD": {"rs_count": 3}, "MUL": {"rs_count": 1},
                          "LOAD": {"rs_count": 1}, "STORE": {"rs_count": 1}})
    assert current_config().rs_counts["ADD"] == 3


def test_setters_update_globals(monkeypatch):
    for name in ("ROB_SIZE", "LATENCIES", "BRANCH_PREDICTOR", "SPECULATION_ENABLED"):
        monkeypatch.setattr(config, name, getattr(config, name))
    config.set_rob_size(16)
    config.set_latencies(dict(config.LATENCIES, MUL=6))
    config.set_branch_predictor("always-not-taken", speculation_enabled=False)

    cfg = current_config()
    assert cfg.rob_size == 16
    assert cfg.latency("MUL") == 6
    assert cfg.branch_predictor == "always-not-taken"
    assert not cfg.speculation_enabled


@pytest.mark.parametrize("overrides", [
    {"rob_size": 1},
    {"branch_predictor": "perceptron"},
    {"latencies": {"DIV": 0}},
    {"fu_config": {"ADD": {"rs_count": 0}, "MUL": {"rs_count": 1},
                   "LOAD": {"rs_count": 1}, "STORE": {"rs_count": 1}}},
    {"zero_register": "R42"},
])
def test_invalid_configuration_is_rejected(overrides):
    with pytest.raises(ValueError):
        current_config(**overrides)


def test_unknown_latency_raises():
    with pytest.raises(ValueError, match="No latency"):
        current_config().latency("FMA")
