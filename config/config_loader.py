"""Load settings.yaml into typed dataclasses. Validates API keys at startup."""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

logger = logging.getLogger(__name__)

_SETTINGS_PATH = Path(__file__).parent / "settings.yaml"


@dataclass
class ModelConfig:
    name: str
    sdk: str
    model: str
    api_key_env: str
    timeout_sec: int
    max_tokens: int
    base_url: str | None = None


@dataclass
class PromptsConfig:
    answer: str
    vote: str
    personas: dict[str, str] = field(default_factory=dict)


@dataclass
class DefaultsConfig:
    provider: str
    database: Path
    user_id: str = "local"
    starting_credits: int = 10
    output_dir: Path = Path("./output")
    api_host: str = "127.0.0.1"
    api_port: int = 8000


@dataclass
class AppConfig:
    defaults: DefaultsConfig
    models: dict[str, ModelConfig]
    prompts: PromptsConfig
    available_providers: set[str] = field(default_factory=set)


def load_config(settings_path: Path = _SETTINGS_PATH) -> AppConfig:
    """Load and validate configuration from settings.yaml.

    Raises FileNotFoundError if settings file missing, ValueError if the
    default provider is not declared under ``models``.
    Logs missing API keys but does not raise; callers check
    available_providers.
    """
    if not settings_path.exists():
        raise FileNotFoundError(f"Settings file not found: {settings_path}")

    with settings_path.open("r", encoding="utf-8") as f:
        raw = yaml.safe_load(f)

    defaults_raw = raw["defaults"]
    defaults = DefaultsConfig(
        provider=str(defaults_raw["provider"]),
        database=Path(defaults_raw["database"]),
        user_id=str(defaults_raw.get("user_id", "local")),
        starting_credits=int(defaults_raw.get("starting_credits", 10)),
        output_dir=Path(defaults_raw.get("output_dir", "./output")),
        api_host=str(defaults_raw.get("api_host", "127.0.0.1")),
        api_port=int(defaults_raw.get("api_port", 8000)),
    )

    prompts_raw = raw["prompts"]
    personas_raw = raw.get("personas") or {}
    prompts = PromptsConfig(
        answer=prompts_raw["answer"],
        vote=prompts_raw["vote"],
        personas={str(k): str(v).strip() for k, v in personas_raw.items()},
    )

    models: dict[str, ModelConfig] = {}
    available_providers: set[str] = set()

    for provider_name, model_raw in raw["models"].items():
        model_cfg = ModelConfig(
            name=provider_name,
            sdk=model_raw["sdk"],
            model=model_raw["model"],
            api_key_env=model_raw["api_key_env"],
            timeout_sec=int(model_raw["timeout_sec"]),
            max_tokens=int(model_raw["max_tokens"]),
            base_url=model_raw.get("base_url"),
        )
        models[provider_name] = model_cfg

        api_key = os.environ.get(model_raw["api_key_env"], "").strip()
        if api_key:
            available_providers.add(provider_name)
            logger.info("Provider available: %s", provider_name)
        else:
            logger.info(
                "Provider skipped (no API key): %s, set %s in .env",
                provider_name,
                model_raw["api_key_env"],
            )

    if defaults.provider not in models:
        raise ValueError(f"Default provider '{defaults.provider}' is not configured under models")

    return AppConfig(
        defaults=defaults,
        models=models,
        prompts=prompts,
        available_providers=available_providers,
    )
