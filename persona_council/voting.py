"""Phase B: one anonymized vote per persona, processed in round order."""

import json
import logging
import random
from collections.abc import Awaitable, Callable, Mapping, Sequence

from config.config_loader import PromptsConfig
from persona_council.ballot import Ballot, build_ballot
from persona_council.models import Persona, Vote
from persona_council.providers.base import AIProvider, ProviderError
from persona_council.tally import new_tally, record_vote

logger = logging.getLogger(__name__)

VOTE_BAD_JSON = "bad json"
VOTE_ERROR = "error"

# (voter, validated vote, voters processed so far, total)
VoteCallback = Callable[[Persona, Vote, int, int], Awaitable[None]]


def parse_vote(content: str) -> tuple[str | None, str]:
    """Return (normalized label or None, explanation).

    Content that is not a JSON object yields (None, "bad json"). A ``vote``
    that is not a string yields a None label but keeps the explanation.
    """
    try:
        parsed = json.loads(content)
    except json.JSONDecodeError:
        return None, VOTE_BAD_JSON
    if not isinstance(parsed, dict):
        return None, VOTE_BAD_JSON

    raw_vote = parsed.get("vote")
    label = raw_vote.strip().upper() if isinstance(raw_vote, str) else None
    explanation = parsed.get("vote_explanation")
    return label, "" if explanation is None else str(explanation)


def resolve_vote(label: str | None, ballot: Ballot) -> str | None:
    """Map a label back to a persona id; None for unknown labels and self-votes."""
    if not label or label == ballot.own_label:
        return None
    return ballot.resolve(label)


async def cast_vote(
    voter: Persona,
    question: str,
    ballot: Ballot,
    provider: AIProvider,
    prompts: PromptsConfig,
) -> Vote:
    """Ask one persona to vote on its ballot. Never raises."""
    prompt = prompts.vote.format(
        own_label=ballot.own_label,
        question=question,
        ballot=ballot.text,
    )
    try:
        response = await provider.generate(voter.system_prompt, prompt)
    except ProviderError as exc:
        logger.warning("Vote call failed for %s: %s", voter.name, exc)
        return Vote(voter.id, None, None, VOTE_ERROR)
    except Exception as exc:
        logger.warning("Vote call for %s failed unexpectedly: %s", voter.name, exc)
        return Vote(voter.id, None, None, VOTE_ERROR)

    label, explanation = parse_vote(response.content)
    target_id = resolve_vote(label, ballot)
    if target_id is None:
        if label == ballot.own_label:
            logger.warning("Discarding self-vote from %s (label %s)", voter.name, label)
        elif label is not None:
            logger.warning("Discarding vote from %s for unknown label %r", voter.name, label)
        return Vote(voter.id, None, None, explanation)
    return Vote(voter.id, target_id, label, explanation)


async def collect_votes(
    personas: Sequence[Persona],
    question: str,
    answers: Mapping[str, str],
    provider: AIProvider,
    prompts: PromptsConfig,
    rng: random.Random,
    on_vote: VoteCallback | None = None,
) -> tuple[list[Vote], dict[str, int]]:
    """Build a fresh ballot for each voter and collect votes one at a time.

    Args:
        personas: The round's personas; voters are processed in this order.
        question: The user's question.
        answers: Phase A answers keyed by persona id.
        provider: Remote model used for every voter.
        prompts: Prompt templates (``vote`` is used).
        rng: Source of ballot permutations.
        on_vote: Optional coroutine awaited after each vote is validated.

    Returns:
        (votes in round order, tally keyed by persona id)
    """
    tally = new_tally(personas)
    votes: list[Vote] = []
    total = len(personas)

    logger.info("Collecting votes from %d personas", total)

    for index, voter in enumerate(personas, start=1):
        ballot = build_ballot(voter.id, personas, answers, rng)
        logger.debug("Ballot for %s: %s (own label %s)", voter.name, ballot.mapping, ballot.own_label)

        vote = await cast_vote(voter, question, ballot, provider, prompts)
        record_vote(tally, vote)
        votes.append(vote)

        if on_vote:
            await on_vote(voter, vote, index, total)

    valid = sum(1 for v in votes if v.target_id is not None)
    logger.info("Vote phase complete: %d/%d valid votes", valid, total)

    return votes, tally
