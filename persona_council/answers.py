"""Phase A: one concurrent answer call per persona, failures isolated."""

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable, Sequence

from config.config_loader import PromptsConfig
from persona_council.models import Persona
from persona_council.providers.base import AIProvider, ProviderError

logger = logging.getLogger(__name__)

ANSWER_ERROR = "Error calling AI"

# (persona, answer text, completed so far, total)
AnswerCallback = Callable[[Persona, str, int, int], Awaitable[None]]


def parse_answer(content: str) -> str:
    """Extract ``answer`` from a JSON object, else return the raw content verbatim."""
    try:
        parsed = json.loads(content)
    except json.JSONDecodeError:
        return content
    if not isinstance(parsed, dict):
        return content
    answer = parsed.get("answer")
    return "" if answer is None else str(answer)


async def _ask_persona(
    provider: AIProvider,
    persona: Persona,
    prompt: str,
) -> tuple[str, str]:
    """Return (persona_id, answer). Never raises; failures become ANSWER_ERROR."""
    try:
        response = await provider.generate(persona.system_prompt, prompt)
    except ProviderError as exc:
        logger.warning("Answer call failed for %s: %s", persona.name, exc)
        return persona.id, ANSWER_ERROR
    except Exception as exc:
        logger.warning("Answer call for %s failed unexpectedly: %s", persona.name, exc)
        return persona.id, ANSWER_ERROR
    return persona.id, parse_answer(response.content)


async def collect_answers(
    personas: Sequence[Persona],
    question: str,
    provider: AIProvider,
    prompts: PromptsConfig,
    on_answer: AnswerCallback | None = None,
) -> dict[str, str]:
    """Ask every persona in parallel and wait for all of them.

    Args:
        personas: The round's personas, in round order.
        question: The user's question.
        provider: Remote model used for every persona.
        prompts: Prompt templates (``answer`` is used).
        on_answer: Optional coroutine awaited as each answer lands, in
            completion order.

    Returns:
        Mapping persona_id -> answer text with one key per persona, in round
        order.
    """
    prompt = prompts.answer.format(question=question)
    by_id = {p.id: p for p in personas}
    total = len(personas)

    logger.info("Collecting answers from %d personas", total)

    tasks = [asyncio.create_task(_ask_persona(provider, p, prompt)) for p in personas]
    collected: dict[str, str] = {}
    try:
        for next_done in asyncio.as_completed(tasks):
            persona_id, answer = await next_done
            collected[persona_id] = answer
            if on_answer:
                await on_answer(by_id[persona_id], answer, len(collected), total)
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()

    failed = sum(1 for a in collected.values() if a == ANSWER_ERROR)
    logger.info("Answer phase complete: %d/%d personas answered", total - failed, total)

    return {p.id: collected[p.id] for p in personas}
