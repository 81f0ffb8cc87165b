"""Vote counting and winner resolution."""

from collections.abc import Sequence

from persona_council.models import Persona, Vote


def new_tally(personas: Sequence[Persona]) -> dict[str, int]:
    return {p.id: 0 for p in personas}


def record_vote(tally: dict[str, int], vote: Vote) -> None:
    """Count a resolved vote. Votes without a target count for nobody."""
    if vote.target_id is None:
        return
    if vote.target_id not in tally:
        raise KeyError(f"Vote target {vote.target_id!r} is not in the round")
    tally[vote.target_id] += 1


def resolve_winner(personas: Sequence[Persona], tally: dict[str, int]) -> str:
    """Pick the persona with the most votes.

    Round order breaks ties: a later persona only takes the lead with a
    strictly higher count. With no votes at all the first persona wins.

    Raises:
        ValueError: If the round is empty.
    """
    if not personas:
        raise ValueError("Cannot resolve a winner for an empty round")
    winner_id = personas[0].id
    best = 0
    for persona in personas:
        count = tally.get(persona.id, 0)
        if count > best:
            best = count
            winner_id = persona.id
    return winner_id
