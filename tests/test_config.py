import pytest

from inframon import config


@pytest.fixture(autouse=True)
def isolated(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(config, "CONFIG_PATHS", [tmp_path / "config.yaml"])
    for key in list(config.DEFAULTS) + ["LOG", "IS_MASTER", "MASTER_URL", "NODE_PORT", "FRONTEND_PORT"]:
        monkeypatch.delenv(f"IFM_{key.upper()}", raising=False)
        monkeypatch.delenv(key, raising=False)
    config.get_config.cache_clear()
    yield
    config.get_config.cache_clear()


def test_defaults():
    cfg = config.reload_config()
    assert cfg["is_master"] is False
    assert cfg["registry_port"] == 3899
    assert cfg["discovery_port"] == 3898
    assert cfg["active_window"] == 60.0
    assert cfg["master_url"] is None


def test_yaml_overrides_defaults(tmp_path):
    (tmp_path / "config.yaml").write_text("registry_port: 5000\nhistory_length: 10\nunknown: 1\n")
    cfg = config.reload_config()
    assert cfg["registry_port"] == 5000
    assert cfg["history_length"] == 10
    assert "unknown" not in cfg


def test_env_beats_yaml(tmp_path, monkeypatch):
    (tmp_path / "config.yaml").write_text("registry_port: 5000\n")
    monkeypatch.setenv("IFM_REGISTRY_PORT", "6000")
    monkeypatch.setenv("IFM_IS_MASTER", "yes")
    monkeypatch.setenv("IFM_LOG", "DEBUG")
    cfg = config.reload_config()
    assert cfg["registry_port"] == 6000
    assert cfg["is_master"] is True
    assert cfg["log_level"] == "DEBUG"


def test_legacy_env_names(monkeypatch):
    monkeypatch.setenv("IS_MASTER", "true")
    monkeypatch.setenv("MASTER_URL", "http://10.0.0.1:3899")
    monkeypatch.setenv("NODE_PORT", "4100")
    cfg = config.reload_config()
    assert cfg["is_master"] is True
    assert cfg["master_url"] == "http://10.0.0.1:3899"
    assert cfg["node_port"] == 4100


def test_invalid_value_keeps_default(monkeypatch):
    monkeypatch.setenv("IFM_NODE_PORT", "not-a-port")
    assert config.reload_config()["node_port"] == 3800


def test_unreadable_yaml_ignored(tmp_path):
    (tmp_path / "config.yaml").write_text("registry_port: [unclosed\n")
    assert config.reload_config()["registry_port"] == 3899


def test_config_is_cached():
    assert config.get_config() is config.get_config()
