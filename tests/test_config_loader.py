import pytest

from crackscan.config_loader import config_problems, get_default_config, reload_config
from crackscan.exceptions import ConfigurationError


def test_missing_file_uses_defaults(tmp_path):
    config = reload_config(str(tmp_path / "absent.yaml"))
    assert config == get_default_config()


def test_partial_file_is_merged_over_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("extraction:\n  fps: 2.0\ndetection:\n  max_retries: 3\n")

    config = reload_config(str(path))

    assert config['extraction']['fps'] == 2.0
    assert config['extraction']['jpeg_quality'] == 95
    assert config['detection']['max_retries'] == 3
    assert config['matching']['tolerance_seconds'] == 5


def test_defaults_are_independent_copies():
    first = get_default_config()
    first['upload']['max_size_mb'] = 1
    assert get_default_config()['upload']['max_size_mb'] == 50


def test_defaults_are_valid():
    assert config_problems(get_default_config()) == []


def test_negative_limits_are_invalid():
    config = get_default_config()
    config['matching']['tolerance_seconds'] = -1
    config['detection']['max_retries'] = -2
    assert len(config_problems(config)) == 2


def test_malformed_file_is_an_error(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("extraction: [fps: 1\n")

    with pytest.raises(ConfigurationError):
        reload_config(str(path))


def test_top_level_must_be_a_mapping(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("- just\n- a list\n")

    with pytest.raises(ConfigurationError):
        reload_config(str(path))


def test_environment_overrides(tmp_path, monkeypatch):
    path = tmp_path / "env.yaml"
    path.write_text("matching:\n  tolerance_seconds: 2\n")
    monkeypatch.setenv("CRACKSCAN_CONFIG", str(path))
    monkeypatch.setenv("CRACKSCAN_API_KEY", "from-env")

    config = reload_config()

    assert config['matching']['tolerance_seconds'] == 2
    assert config['detection']['api_key'] == "from-env"


def test_config_problems_lists_each_value():
    config = get_default_config()
    config['extraction']['jpeg_quality'] = 0
    config['detection']['endpoint'] = ""

    assert config_problems(config) == [
        "extraction.jpeg_quality must be 1-100",
        "detection.endpoint is required",
    ]
