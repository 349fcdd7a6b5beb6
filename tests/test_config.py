# tests/test_config.py
"""Tests for AnalysisConfig and JSON configuration loading."""

import json

import pytest

from hepf_core.config import PASS_PATH_DEFAULTS, AnalysisConfig, load_config
from hepf_core.errors import ConfigError
from hepf_core.lock_state import IndirectCallPolicy, LockPolicy, TryAcquirePolicy


class TestDefaults:

    def test_lock_policy_default(self, default_config):
        assert default_config.lock_policy == LockPolicy(
            TryAcquirePolicy.IGNORE, IndirectCallPolicy.CLEAR)
        assert default_config.validate() == []

    @pytest.mark.parametrize("name", sorted(PASS_PATH_DEFAULTS))
    def test_per_pass_limits(self, default_config, name):
        assert default_config.path_limits(name) == PASS_PATH_DEFAULTS[name]

    def test_explicit_limits_apply_to_every_pass(self):
        config = AnalysisConfig(max_paths=7)
        assert config.path_limits("path-fan-out") == (7, 1)
        assert config.path_limits("path-critical-section") == (7, 100)


class TestOverrides:

    def test_none_overrides_are_ignored(self, default_config):
        assert default_config.with_overrides(max_paths=None) is default_config

    def test_override_applied(self, default_config):
        config = default_config.with_overrides(max_loop_iterations=0)
        assert config.max_loop_iterations == 0

    def test_invalid_override(self, default_config):
        with pytest.raises(ConfigError):
            default_config.with_overrides(max_paths=0)

    @pytest.mark.parametrize("preset", [0, 1, 2])
    def test_policy_presets(self, default_config, preset):
        assert default_config.with_policy_preset(preset).lock_policy == \
            LockPolicy.preset(preset)

    def test_unknown_preset(self, default_config):
        with pytest.raises(ConfigError):
            default_config.with_policy_preset(3)


class TestFromMapping:

    def test_full_mapping(self):
        config = AnalysisConfig.from_mapping({
            "max_paths": 50,
            "try_acquire_policy": "ACQUIRE",
            "indirect_call_policy": "preserve",
        })
        assert config.max_paths == 50
        assert config.lock_policy == LockPolicy.preset(1)

    def test_preset_key(self):
        config = AnalysisConfig.from_mapping({"policy_preset": 0})
        assert config.lock_policy == LockPolicy.preset(0)

    @pytest.mark.parametrize("data", [
        {"max_pathz": 1},
        {"max_paths": "ten"},
        {"max_paths": True},
        {"max_iterations": 0},
        {"try_acquire_policy": "sometimes"},
        {"policy_preset": "1"},
        ["not", "a", "mapping"],
    ])
    def test_rejected(self, data):
        with pytest.raises(ConfigError):
            AnalysisConfig.from_mapping(data)

    def test_to_dict_round_trip(self):
        config = AnalysisConfig(max_paths=9, try_acquire_policy=TryAcquirePolicy.ACQUIRE)
        data = config.to_dict()
        assert data["try_acquire_policy"] == "acquire"
        assert AnalysisConfig.from_mapping(data) == config


class TestLoadConfig:

    def test_load(self, tmp_path):
        path = tmp_path / "hepf.json"
        path.write_text(json.dumps({"max_loop_iterations": 3}), encoding="utf-8")
        assert load_config(path).max_loop_iterations == 3

    def test_bad_json(self, tmp_path):
        path = tmp_path / "hepf.json"
        path.write_text("{\n  'max_paths': 1\n}", encoding="utf-8")
        with pytest.raises(ConfigError) as info:
            load_config(path)
        assert ":2: invalid JSON" in str(info.value)

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_config(tmp_path / "nope.json")
