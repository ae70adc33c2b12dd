import pytest
import yaml

from uzi.config import Config, default_config, get_default_config_path, load_config


def test_default_path():
    assert get_default_config_path() == "uzi.yaml"


def test_default_config_is_empty():
    cfg = default_config()
    assert cfg.dev_command is None
    assert cfg.port_range is None
    assert cfg == Config()


def test_load_both_values(tmp_path):
    path = tmp_path / "uzi.yaml"
    path.write_text('devCommand: "npm run dev -- --port $PORT"\nportRange: 3000-3010\n')
    cfg = load_config(path)
    assert cfg.dev_command == "npm run dev -- --port $PORT"
    assert cfg.port_range == "3000-3010"


def test_load_partial(tmp_path):
    path = tmp_path / "uzi.yaml"
    path.write_text("portRange: 4000-4005\n")
    cfg = load_config(str(path))
    assert cfg.dev_command is None
    assert cfg.port_range == "4000-4005"


def test_scalar_becomes_string(tmp_path):
    path = tmp_path / "uzi.yaml"
    path.write_text("devCommand: 42\n")
    assert load_config(path).dev_command == "42"


def test_empty_file_gives_empty_config(tmp_path):
    path = tmp_path / "uzi.yaml"
    path.write_text("")
    assert load_config(path) == Config()


def test_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_config(tmp_path / "absent.yaml")


def test_invalid_yaml_raises(tmp_path):
    path = tmp_path / "uzi.yaml"
    path.write_text("devCommand: [unclosed\n")
    with pytest.raises(yaml.YAMLError):
        load_config(path)


def test_non_mapping_raises(tmp_path):
    path = tmp_path / "uzi.yaml"
    path.write_text("- a\n- b\n")
    with pytest.raises(ValueError):
        load_config(path)