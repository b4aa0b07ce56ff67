"""Tests for runtime settings."""

import pytest

from mathjit_config import Settings
from mathjit_errors import ConfigError


class TestDefaults:
    def test_defaults(self):
        s = Settings()
        assert s.max_call_depth == 200
        assert s.max_sum_iterations == 10_000_000
        assert s.opt_level == 2
        assert not s.verbose
        assert not s.timings

    @pytest.mark.parametrize("changes", [
        {"max_call_depth": 0},
        {"max_sum_iterations": -1},
        {"opt_level": 4},
    ])
    def test_invalid_values_rejected(self, changes):
        with pytest.raises(ConfigError):
            Settings(**changes)


class TestFromEnv:
    def test_empty_environment_gives_defaults(self):
        assert Settings.from_env({}) == Settings()

    def test_reads_prefixed_variables(self):
        s = Settings.from_env({
            "MATHJIT_MAX_CALL_DEPTH": "50",
            "MATHJIT_OPT_LEVEL": "0",
            "MATHJIT_VERBOSE": "yes",
            "MATHJIT_TIMINGS": "0",
            "UNRELATED": "1",
        })
        assert (s.max_call_depth, s.opt_level, s.verbose, s.timings) == (50, 0, True, False)

    def test_reads_os_environ_by_default(self, monkeypatch):
        monkeypatch.setenv("MATHJIT_MAX_SUM_ITERATIONS", "1000")
        assert Settings.from_env().max_sum_iterations == 1000

    @pytest.mark.parametrize("env", [
        {"MATHJIT_MAX_CALL_DEPTH": "lots"},
        {"MATHJIT_VERBOSE": "maybe"},
        {"MATHJIT_MAX_CALL_DEPTH": "-3"},
    ])
    def test_bad_values(self, env):
        with pytest.raises(ConfigError):
            Settings.from_env(env)


class TestOverride:
    def test_none_keeps_current_value(self):
        s = Settings(max_call_depth=10).override(max_call_depth=None, verbose=True)
        assert s.max_call_depth == 10
        assert s.verbose

    def test_override_is_validated(self):
        with pytest.raises(ConfigError):
            Settings().override(opt_level=9)

    def test_settings_are_immutable(self):
        s = Settings()
        with pytest.raises(AttributeError):
            s.verbose = True
