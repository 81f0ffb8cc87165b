"""Round orchestration: pre-flight, answers, anonymized votes, winner, commit."""

import asyncio
import logging
import random
from dataclasses import dataclass

from config.config_loader import PromptsConfig
from persona_council.answers import collect_answers
from persona_council.commit import build_outcomes, commit_round
from persona_council.errors import (
    CommitError,
    EmptyQueryError,
    InsufficientCreditsError,
    NoActivePersonasError,
)
from persona_council.events import (
    PHASE_ANSWERS,
    PHASE_VOTING,
    AnswerEvent,
    CompleteEvent,
    CouncilEvent,
    ErrorEvent,
    PhaseEvent,
    ProgressEmitter,
    VoteEvent,
    WinnerEvent,
)
from persona_council.models import CouncilResult, Persona, Vote
from persona_council.providers.base import AIProvider
from persona_council.store import CouncilStore
from persona_council.tally import resolve_winner
from persona_council.voting import collect_votes

logger = logging.getLogger(__name__)

ANSWERS_MESSAGE = "Collecting answers from council members..."
VOTING_MESSAGE = "Council members are voting..."

# Strong references to rounds still running after their consumer went away.
_background_rounds: set[asyncio.Task] = set()


@dataclass(frozen=True)
class CouncilRound:
    """Snapshot taken at pre-flight. ``personas`` order breaks ties."""

    user_id: str
    question: str
    personas: tuple[Persona, ...]


async def prepare_round(question: str, user_id: str, store: CouncilStore) -> CouncilRound:
    """Run the pre-flight checks. No remote call happens here.

    A passing round holds one of the user's credits until ``execute_round``
    either charges it at commit or releases it.

    Raises:
        EmptyQueryError: The question is blank.
        NoActivePersonasError: Nobody would answer.
        InsufficientCreditsError: The user has no unheld credit left.
    """
    question = (question or "").strip()
    if not question:
        raise EmptyQueryError()

    personas = await asyncio.to_thread(store.list_active_personas)
    if not personas:
        raise NoActivePersonasError()

    if not await asyncio.to_thread(store.check_and_reserve, user_id):
        raise InsufficientCreditsError(user_id)

    return CouncilRound(user_id=user_id, question=question, personas=tuple(personas))


async def execute_round(
    council_round: CouncilRound,
    store: CouncilStore,
    provider: AIProvider,
    prompts: PromptsConfig,
    rng: random.Random | None = None,
    emitter: ProgressEmitter | None = None,
) -> CouncilResult:
    """Run both phases, resolve the winner and commit.

    Per-persona failures degrade that persona's answer or vote only. Raises
    CommitError if the result cannot be saved; the round's credit hold is
    released then, and on any other early exit.
    """
    rng = rng or random.Random()
    personas = list(council_round.personas)
    names = {p.id: p.name for p in personas}

    async def emit(event: CouncilEvent) -> None:
        if emitter is not None:
            await emitter.emit(event)

    async def on_answer(persona: Persona, answer: str, current: int, total: int) -> None:
        await emit(AnswerEvent(persona.id, persona.name, answer, current, total))

    async def on_vote(voter: Persona, vote: Vote, current: int, total: int) -> None:
        await emit(
            VoteEvent(
                persona_id=voter.id,
                persona_name=voter.name,
                voted_for=vote.target_id,
                voted_for_name=names.get(vote.target_id) if vote.target_id else None,
                vote_explanation=vote.explanation,
                current=current,
                total=total,
            )
        )

    logger.info("Council round started: %d personas", len(personas))

    # Until the run is saved, any exit gives the held credit back.
    try:
        await emit(PhaseEvent(PHASE_ANSWERS, ANSWERS_MESSAGE))
        answers = await collect_answers(
            personas, council_round.question, provider, prompts, on_answer=on_answer
        )

        await emit(PhaseEvent(PHASE_VOTING, VOTING_MESSAGE))
        votes, tally = await collect_votes(
            personas, council_round.question, answers, provider, prompts, rng, on_vote=on_vote
        )

        winner_id = resolve_winner(personas, tally)
        logger.info("Winner: %s with %d vote(s)", names[winner_id], tally[winner_id])
        await emit(WinnerEvent(winner_id, dict(tally)))
        outcomes = build_outcomes(personas, answers, votes, winner_id)
    except BaseException:
        store.release_reservation(council_round.user_id)
        raise

    try:
        receipt = await asyncio.to_thread(
            commit_round,
            store,
            council_round.user_id,
            council_round.question,
            outcomes,
            tally,
            winner_id,
        )
    except CommitError:
        store.release_reservation(council_round.user_id)
        raise

    result = CouncilResult(
        answer=answers[winner_id],
        winner_id=winner_id,
        vote_counts=dict(tally),
        personas=outcomes,
        credits_left=receipt.credits_left,
        run_id=receipt.run_id,
    )
    await emit(CompleteEvent(result))
    return result


async def run_council(
    question: str,
    user_id: str,
    store: CouncilStore,
    provider: AIProvider,
    prompts: PromptsConfig,
    rng: random.Random | None = None,
) -> CouncilResult:
    """Non-streaming entry point: the whole round, final aggregate only."""
    council_round = await prepare_round(question, user_id, store)
    return await execute_round(council_round, store, provider, prompts, rng=rng)


class CouncilStream:
    """A round running in the background, narrated through its emitter.

    Iterate it for events; call ``detach`` when the consumer goes away. The
    round keeps running and commits either way.
    """

    def __init__(self, emitter: ProgressEmitter, task: asyncio.Task) -> None:
        self._emitter = emitter
        self._task = task

    def __aiter__(self):
        return self._emitter.events()

    def detach(self) -> None:
        self._emitter.detach()

    async def wait(self) -> CouncilResult | None:
        """The committed result, or None if the round ended with an error event."""
        return await self._task


async def _narrated_round(
    council_round: CouncilRound,
    store: CouncilStore,
    provider: AIProvider,
    prompts: PromptsConfig,
    rng: random.Random | None,
    emitter: ProgressEmitter,
) -> CouncilResult | None:
    try:
        return await execute_round(council_round, store, provider, prompts, rng=rng, emitter=emitter)
    except Exception as exc:
        logger.exception("Council round failed")
        await emitter.emit(ErrorEvent(str(exc) or "Internal server error"))
        return None


async def stream_council(
    question: str,
    user_id: str,
    store: CouncilStore,
    provider: AIProvider,
    prompts: PromptsConfig,
    rng: random.Random | None = None,
) -> CouncilStream:
    """Streaming entry point.

    Pre-flight errors raise here, before any event exists. After that every
    outcome, success or failure, ends the stream with exactly one terminal
    event.
    """
    council_round = await prepare_round(question, user_id, store)
    emitter = ProgressEmitter()
    task = asyncio.create_task(
        _narrated_round(council_round, store, provider, prompts, rng, emitter)
    )
    _background_rounds.add(task)
    task.add_done_callback(_background_rounds.discard)
    return CouncilStream(emitter, task)
