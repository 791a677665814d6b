import json

from assessmatch.config import ConfigManager


def test_defaults(isolated_config):
    assert isolated_config.get("embedding", "backend") == "ollama"
    assert isolated_config.get("cache", "ttl_seconds") == 86400
    assert isolated_config.get("preprocessing", "overflow_policy") == "reject"
    assert isolated_config.get("web", "port") == 7860
    assert isolated_config.get("missing") == {}


def test_environment_overrides_are_typed(tmp_path, monkeypatch):
    monkeypatch.setenv("ASSESSMATCH_CACHE_TTL", "120")
    monkeypatch.setenv("ASSESSMATCH_RERANK_ENABLED", "false")
    monkeypatch.setenv("ASSESSMATCH_REQUEST_TIMEOUT", "2.5")
    config = ConfigManager(config_dir=str(tmp_path))
    assert config.get("cache", "ttl_seconds") == 120
    assert config.get("reranker", "enabled") is False
    assert config.get("engine", "request_timeout") == 2.5


def test_invalid_environment_value_keeps_default(tmp_path, monkeypatch):
    monkeypatch.setenv("ASSESSMATCH_WEB_PORT", "not-a-port")
    config = ConfigManager(config_dir=str(tmp_path))
    assert config.get("web", "port") == 7860


def test_set_persists_to_json(tmp_path):
    config = ConfigManager(config_dir=str(tmp_path))
    assert config.set("engine", "max_results", 5)
    saved = json.loads((tmp_path / "assessmatch.config.json").read_text())
    assert saved["engine"]["max_results"] == 5
    assert ConfigManager(config_dir=str(tmp_path)).get("engine", "max_results") == 5


def test_environment_wins_over_json(tmp_path, monkeypatch):
    ConfigManager(config_dir=str(tmp_path)).set("embedding", "backend", "openai")
    monkeypatch.setenv("ASSESSMATCH_EMBEDDING_BACKEND", "hashing")
    assert ConfigManager(config_dir=str(tmp_path)).get("embedding", "backend") == "hashing"


def test_env_file_round_trip(tmp_path, monkeypatch):
    # Registered so teardown removes whatever set_env_var leaves in os.environ.
    monkeypatch.setenv("ASSESSMATCH_MAX_CHARS", "10000")
    config = ConfigManager(config_dir=str(tmp_path))
    assert config.set_env_var("ASSESSMATCH_MAX_CHARS", "500")
    assert "ASSESSMATCH_MAX_CHARS" in (tmp_path / ".env").read_text()
    assert config.get("preprocessing", "max_chars") == 500

    assert config.unset_env_var("ASSESSMATCH_MAX_CHARS")
    assert config.get("preprocessing", "max_chars") == 10000


def test_convert_value():
    assert ConfigManager.convert_value("yes", False) is True
    assert ConfigManager.convert_value("7", 1) == 7
    assert ConfigManager.convert_value("0.25", 1.0) == 0.25
    assert ConfigManager.convert_value("abc", "x") == "abc"


def test_validate_flags_bad_values(tmp_path):
    catalog = tmp_path / "catalog.csv"
    catalog.write_text("id\n")
    config = ConfigManager(config_dir=str(tmp_path))
    config.config["catalog"]["path"] = str(catalog)
    assert config.validate_config() == []

    config.config["embedding"]["backend"] = "word2vec"
    config.config["preprocessing"]["overflow_policy"] = "ignore"
    config.config["reranker"]["backend"] = "magic"
    config.config["catalog"]["path"] = str(tmp_path / "nope.csv")
    issues = config.validate_config()
    assert len(issues) == 4
    assert any("embedding backend" in issue for issue in issues)
    assert any("Catalog file not found" in issue for issue in issues)


def test_reset_to_defaults(tmp_path):
    config = ConfigManager(config_dir=str(tmp_path))
    config.set("cache", "max_entries", 3)
    assert config.reset_to_defaults()
    assert config.get("cache", "max_entries") == 2048


def test_env_template_lists_every_setting(isolated_config):
    template = isolated_config.get_env_template()
    assert "# OPENAI_API_KEY=" in template
    for env_var in ConfigManager.ENV_MAPPINGS:
        assert f"# {env_var}=" in template
    assert "# ASSESSMATCH_RERANK_ENABLED=true" in template
