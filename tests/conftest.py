"""Shared pytest fixtures."""

import json
import re
from collections.abc import Callable
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from config.config_loader import AppConfig, DefaultsConfig, ModelConfig, PromptsConfig
from persona_council.models import ModelResponse, Persona
from persona_council.providers.base import AIProvider
from persona_council.store import SQLiteCouncilStore

# Directives double as the key a scripted provider uses to tell personas apart.
SEED_PERSONAS = {
    "Alpha": "directive alpha",
    "Beta": "directive beta",
    "Gamma": "directive gamma",
}

# (labels keyed by answer text, own label) -> raw vote content
VoteScript = Callable[[dict[str, str], str], str]


def ballot_labels(user_message: str) -> dict[str, str]:
    """Answer text -> label, read back from a rendered vote prompt."""
    _, _, ballot = user_message.partition("Ballot:\n")
    labels: dict[str, str] = {}
    for line in ballot.splitlines():
        label, _, answer = line.partition(". ")
        labels[answer] = label
    return labels


def own_label(user_message: str) -> str:
    match = re.search(r"own=([A-Z]+)", user_message)
    assert match, "vote prompt carries no own label"
    return match.group(1)


def vote_for(answer: str, explanation: str = "most useful") -> VoteScript:
    return lambda labels, own: json.dumps({"vote": labels[answer], "vote_explanation": explanation})


def vote_self(explanation: str = "mine is best") -> VoteScript:
    return lambda labels, own: json.dumps({"vote": own, "vote_explanation": explanation})


def vote_raw(content: str) -> VoteScript:
    return lambda labels, own: content


def council_responder(
    answers: dict[str, str | Exception],
    votes: dict[str, VoteScript | Exception],
) -> Callable[[str, str], str | Exception]:
    """Script a whole round, keyed by persona directive.

    ``answers`` holds each persona's answer text; ``votes`` says how each
    persona fills its ballot. Exceptions are raised from the provider call.
    """

    def respond(system_prompt: str, user_message: str) -> str | Exception:
        if "Ballot:" in user_message:
            script = votes[system_prompt]
            if isinstance(script, Exception):
                return script
            return script(ballot_labels(user_message), own_label(user_message))
        answer = answers[system_prompt]
        if isinstance(answer, Exception):
            return answer
        return json.dumps({"answer": answer})

    return respond


class MockProvider(AIProvider):
    """Test double AIProvider.

    Replies with ``response_content``, or with whatever ``responder`` returns
    for the (system prompt, user message) pair. A returned exception is raised.
    """

    def __init__(
        self,
        provider_name: str = "mock",
        response_content: str = '{"answer": "Mock response"}',
        responder: Callable[[str, str], str | Exception] | None = None,
    ) -> None:
        self._name = provider_name
        self._response_content = response_content
        self._responder = responder
        # Shadow the class method with an AsyncMock so tests can inspect calls.
        self.generate = AsyncMock(side_effect=self._reply)  # type: ignore[assignment]

    async def _reply(self, system_prompt: str, user_message: str) -> ModelResponse:
        if self._responder is not None:
            content = self._responder(system_prompt, user_message)
        else:
            content = self._response_content
        if isinstance(content, Exception):
            raise content
        return ModelResponse(
            provider=self._name,
            model="mock-model",
            content=content,
            latency_sec=0.1,
            token_count=10,
        )

    def name(self) -> str:
        return self._name

    def model_string(self) -> str:
        return "mock-model"

    async def generate(self, system_prompt: str, user_message: str) -> ModelResponse:  # type: ignore[override]
        """Default implementation; replaced by AsyncMock in __init__."""
        return await self._reply(system_prompt, user_message)


@pytest.fixture
def sample_model_config() -> ModelConfig:
    return ModelConfig(
        name="test_model",
        sdk="openai",
        model="test-model-1",
        api_key_env="TEST_API_KEY",
        timeout_sec=30,
        max_tokens=1024,
        base_url=None,
    )


@pytest.fixture
def sample_prompts_config() -> PromptsConfig:
    return PromptsConfig(
        answer="ANSWER\n{question}",
        vote="VOTE own={own_label}\n{question}\nBallot:\n{ballot}",
        personas=dict(SEED_PERSONAS),
    )


@pytest.fixture
def sample_defaults_config(tmp_path: Path) -> DefaultsConfig:
    return DefaultsConfig(
        provider="openrouter",
        database=tmp_path / "council.sqlite3",
        user_id="tester",
        starting_credits=3,
        output_dir=tmp_path / "output",
    )


@pytest.fixture
def sample_app_config(
    sample_defaults_config: DefaultsConfig,
    sample_prompts_config: PromptsConfig,
) -> AppConfig:
    model_cfg = ModelConfig(
        name="openrouter",
        sdk="openrouter",
        model="openai/gpt-oss-120b",
        api_key_env="OPENROUTER_API_KEY",
        timeout_sec=60,
        max_tokens=4096,
        base_url="https://openrouter.ai/api/v1",
    )
    return AppConfig(
        defaults=sample_defaults_config,
        models={"openrouter": model_cfg},
        prompts=sample_prompts_config,
        available_providers={"openrouter"},
    )


@pytest.fixture
def sample_personas() -> list[Persona]:
    return [
        Persona(id="p1", name="Alpha", system_prompt="directive alpha"),
        Persona(id="p2", name="Beta", system_prompt="directive beta"),
        Persona(id="p3", name="Gamma", system_prompt="directive gamma"),
    ]


@pytest.fixture
def sample_answers() -> dict[str, str]:
    return {"p1": "answer one", "p2": "answer two", "p3": "answer three"}


@pytest.fixture
def store(tmp_path: Path) -> SQLiteCouncilStore:
    council_store = SQLiteCouncilStore(tmp_path / "council.sqlite3", starting_credits=3)
    council_store.seed_personas(SEED_PERSONAS)
    return council_store


@pytest.fixture
def mock_provider() -> MockProvider:
    return MockProvider()
