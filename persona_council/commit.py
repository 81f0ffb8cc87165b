"""Write a resolved round: run rows, persona stats and the credit, all or nothing."""

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from persona_council.errors import CommitError
from persona_council.models import Persona, PersonaOutcome, StatsDelta, Vote
from persona_council.store import CouncilStore

logger = logging.getLogger(__name__)


@dataclass
class CommitReceipt:
    run_id: str
    credits_left: int


def build_outcomes(
    personas: Sequence[Persona],
    answers: Mapping[str, str],
    votes: Sequence[Vote],
    winner_id: str,
) -> list[PersonaOutcome]:
    """One row per persona in round order."""
    votes_by_voter = {v.voter_id: v for v in votes}
    outcomes: list[PersonaOutcome] = []
    for persona in personas:
        vote = votes_by_voter.get(persona.id)
        outcomes.append(
            PersonaOutcome(
                persona_id=persona.id,
                name=persona.name,
                answer=answers[persona.id],
                vote_label=vote.label if vote else None,
                voted_for=vote.target_id if vote else None,
                vote_explanation=vote.explanation if vote else "",
                is_winner=persona.id == winner_id,
            )
        )
    return outcomes


def commit_round(
    store: CouncilStore,
    user_id: str,
    question: str,
    outcomes: Sequence[PersonaOutcome],
    tally: Mapping[str, int],
    winner_id: str,
) -> CommitReceipt:
    """Persist the round inside one store transaction.

    Every persona gets ``runs + 1`` and its tally added to ``vote_score``;
    only the winner gets ``wins + 1``; the user pays one credit.

    Raises:
        CommitError: If any write fails. Nothing is kept in that case.
    """
    try:
        with store.transaction():
            run_id = store.commit_run(user_id, question, winner_id, outcomes)
            for outcome in outcomes:
                store.increment_stats(
                    outcome.persona_id,
                    StatsDelta(
                        runs=1,
                        wins=1 if outcome.persona_id == winner_id else 0,
                        vote_score=tally.get(outcome.persona_id, 0),
                    ),
                )
            credits_left = store.commit_decrement(user_id, 1)
    except Exception as exc:
        logger.error("Commit failed for user %s, rolled back: %s", user_id, exc)
        raise CommitError(f"Failed to save council run: {exc}") from exc

    logger.info("Committed run %s (winner %s, %d credits left)", run_id, winner_id, credits_left)
    return CommitReceipt(run_id=run_id, credits_left=credits_left)
