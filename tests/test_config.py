import json

import pytest

from jsmonitor.core.config import Config, get_default_config
from jsmonitor.core.errors import ConfigError


def test_defaults():
    config = get_default_config()
    assert config.similarity_threshold == 0.7
    assert config.max_lines_per_section == 10
    assert config.max_endpoints_per_domain == 1000
    assert config.max_file_size == 5 * 1024 * 1024
    assert config.webhook_url is None


def test_from_dict_accepts_camel_case_and_ignores_unknown_keys():
    config = Config.from_dict({
        "similarityThreshold": 0.5,
        "maxLinesPerSection": 3,
        "customEndpointPatterns": [{"pattern": "/internal/\\w+"}],
        "somethingElse": True,
    })
    assert config.similarity_threshold == 0.5
    assert config.max_lines_per_section == 3
    assert config.custom_endpoint_patterns == [{"pattern": "/internal/\\w+"}]


@pytest.mark.parametrize("overrides", [
    {"similarity_threshold": 1.5},
    {"max_lines_per_section": 0},
    {"max_concurrency": 0},
    {"custom_endpoint_patterns": [{"category": "x"}]},
])
def test_invalid_values_raise(overrides):
    with pytest.raises(ConfigError):
        Config(**overrides)


def test_from_file(tmp_path):
    path = tmp_path / "config.json"
    path.write_text(json.dumps({"dataDir": str(tmp_path / "d"), "saveDiff": False}))
    config = Config.from_file(str(path))
    assert config.data_dir == str(tmp_path / "d")
    assert config.save_diff is False


def test_from_file_rejects_broken_json(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{not json")
    with pytest.raises(ConfigError):
        Config.from_file(str(path))
