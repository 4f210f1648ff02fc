"""Unit tests for default settings loading and merging."""

import pytest

from pipeline_it.config.defaults import load_defaults, merge_configs


class TestLoadDefaults:
    def test_loads_settings_defaults(self):
        defaults = load_defaults("settings")
        assert defaults["poll"]["max_wait_seconds"] == 900
        assert defaults["poll"]["interval_seconds"] == 10
        assert defaults["log_json"] is False
        assert "dataflow" not in defaults

    def test_env_references_are_left_unresolved(self):
        defaults = load_defaults()
        assert defaults["pubsub_project_id"].startswith("${PIPELINE_IT_PUBSUB_PROJECT")

    def test_missing_defaults_raises(self):
        with pytest.raises(FileNotFoundError, match="nonexistent"):
            load_defaults("nonexistent")


class TestMergeConfigs:
    def test_shallow_override(self):
        result = merge_configs({"a": 1, "b": 2}, {"b": 99})
        assert result == {"a": 1, "b": 99}

    def test_deep_merge(self):
        base = {"poll": {"max_wait_seconds": 900, "interval_seconds": 10}}
        result = merge_configs(base, {"poll": {"interval_seconds": 1}})
        assert result["poll"] == {"max_wait_seconds": 900, "interval_seconds": 1}

    def test_dict_replaces_scalar(self):
        result = merge_configs({"dataflow": None}, {"dataflow": {"project_id": "p"}})
        assert result["dataflow"] == {"project_id": "p"}

    def test_non_mutating(self):
        base = {"a": {"x": 1}}
        merge_configs(base, {"a": {"y": 2}})
        assert "y" not in base["a"]
