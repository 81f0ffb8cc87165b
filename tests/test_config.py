"""Tests for config/config_loader.py."""

from pathlib import Path

import pytest
import yaml

from config.config_loader import AppConfig, ModelConfig, PromptsConfig, load_config


@pytest.fixture
def minimal_settings(tmp_path: Path) -> Path:
    """Write a minimal valid settings.yaml to a temp path."""
    settings = {
        "defaults": {
            "provider": "openrouter",
            "database": "./data/test.sqlite3",
            "starting_credits": 5,
        },
        "models": {
            "openrouter": {
                "sdk": "openrouter",
                "model": "openai/gpt-oss-120b",
                "api_key_env": "TEST_OPENROUTER_KEY",
                "base_url": "https://openrouter.ai/api/v1",
                "timeout_sec": 120,
                "max_tokens": 4096,
            }
        },
        "prompts": {
            "answer": "Answer: {question}",
            "vote": "Own {own_label}. Q: {question}\n{ballot}",
        },
        "personas": {
            "Software Engineer": "You are a Senior Software Engineer.\n",
            "Ethicist": "You are a Technology Ethicist.",
        },
    }
    path = tmp_path / "settings.yaml"
    path.write_text(yaml.dump(settings, sort_keys=False), encoding="utf-8")
    return path


def test_load_config_returns_app_config(minimal_settings):
    config = load_config(minimal_settings)
    assert isinstance(config, AppConfig)


def test_load_config_defaults(minimal_settings):
    config = load_config(minimal_settings)
    assert config.defaults.provider == "openrouter"
    assert config.defaults.database == Path("./data/test.sqlite3")
    assert config.defaults.starting_credits == 5
    assert config.defaults.user_id == "local"
    assert config.defaults.api_port == 8000
    assert isinstance(config.defaults.output_dir, Path)


def test_load_config_models(minimal_settings):
    config = load_config(minimal_settings)
    model = config.models["openrouter"]
    assert isinstance(model, ModelConfig)
    assert model.model == "openai/gpt-oss-120b"
    assert model.base_url == "https://openrouter.ai/api/v1"


def test_load_config_prompts(minimal_settings):
    config = load_config(minimal_settings)
    assert isinstance(config.prompts, PromptsConfig)
    assert "{question}" in config.prompts.answer
    assert "{own_label}" in config.prompts.vote


def test_load_config_personas_stripped(minimal_settings):
    config = load_config(minimal_settings)
    assert list(config.prompts.personas) == ["Software Engineer", "Ethicist"]
    assert config.prompts.personas["Software Engineer"] == "You are a Senior Software Engineer."


def test_load_config_available_providers_with_key(minimal_settings, monkeypatch):
    monkeypatch.setenv("TEST_OPENROUTER_KEY", "sk-or-test")
    config = load_config(minimal_settings)
    assert "openrouter" in config.available_providers


def test_load_config_no_available_providers_without_key(minimal_settings, monkeypatch):
    monkeypatch.delenv("TEST_OPENROUTER_KEY", raising=False)
    config = load_config(minimal_settings)
    assert config.available_providers == set()


def test_load_config_missing_file():
    with pytest.raises(FileNotFoundError):
        load_config(Path("/nonexistent/settings.yaml"))


def test_load_config_unknown_default_provider(minimal_settings):
    raw = yaml.safe_load(minimal_settings.read_text(encoding="utf-8"))
    raw["defaults"]["provider"] = "grok"
    minimal_settings.write_text(yaml.dump(raw), encoding="utf-8")
    with pytest.raises(ValueError):
        load_config(minimal_settings)


def test_load_config_personas_empty_when_missing(minimal_settings):
    """Personas section is optional and defaults to an empty dict."""
    raw = yaml.safe_load(minimal_settings.read_text(encoding="utf-8"))
    del raw["personas"]
    minimal_settings.write_text(yaml.dump(raw), encoding="utf-8")
    assert load_config(minimal_settings).prompts.personas == {}


def test_shipped_settings_render():
    config = load_config()
    assert config.defaults.provider in config.models
    assert len(config.prompts.personas) == 6
    vote = config.prompts.vote.format(own_label="B", question="Q?", ballot="A. x\nB. y")
    assert '{"vote": "A|B|C|...", "vote_explanation": string}' in vote
    assert config.prompts.answer.format(question="Q?").rstrip().endswith("Q?")
