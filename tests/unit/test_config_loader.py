"""Layered configuration loading."""

import textwrap

from resumeflow.core.config.loader import ConfigLoader, load_config


def _write(path, text):
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(textwrap.dedent(text), encoding="utf-8")


def test_layers_merge_in_order(tmp_path, monkeypatch):
    _write(
        tmp_path / "default.yaml",
        """
        ai:
          model: gpt-4o-mini
          min_interval_ms: 6000
          retry:
            max_retries: 3
        queue:
          max_calls: 10
        """,
    )
    _write(
        tmp_path / "environments" / "staging.yaml",
        """
        ai:
          retry:
            max_retries: 5
        """,
    )
    monkeypatch.setenv("RESUMEFLOW_ENV", "staging")
    monkeypatch.setenv("RESUMEFLOW_AI__MIN_INTERVAL_MS", "250")
    monkeypatch.setenv("RESUMEFLOW_QUEUE__PAUSED", "yes")

    config = ConfigLoader(tmp_path).load(overrides={"queue": {"max_calls": 20}})

    assert config["ai"]["model"] == "gpt-4o-mini"
    assert config["ai"]["retry"]["max_retries"] == 5
    assert config["ai"]["min_interval_ms"] == 250
    assert config["queue"] == {"max_calls": 20, "paused": True}


def test_flat_env_vars_stay_out_of_the_tree(tmp_path, monkeypatch):
    _write(tmp_path / "default.yaml", "cache:\n  parse_ttl_seconds: 3600\n")
    monkeypatch.setenv("RESUMEFLOW_ENV", "missing")
    monkeypatch.setenv("RESUMEFLOW_TEST_MODE", "1")
    monkeypatch.setenv("RESUMEFLOW_CACHE__PARSE_TTL_SECONDS", "0.5")

    config = load_config(config_dir=tmp_path)

    assert "test_mode" not in config
    assert config["cache"]["parse_ttl_seconds"] == 0.5


def test_shipped_config_has_pipeline_defaults(monkeypatch):
    monkeypatch.setenv("RESUMEFLOW_ENV", "production")
    config = load_config()

    assert config["ai"]["min_interval_ms"] == 6000
    assert config["queue"]["max_calls"] == 10
    assert config["queue"]["window_ms"] == 60000
    assert config["queue"]["max_attempts"] == 3
    assert config["cache"]["parse_ttl_seconds"] == 3600
    assert config["extraction"]["min_words"] == 50
