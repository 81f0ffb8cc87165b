"""Per-voter anonymized ballots: a fresh shuffled label -> persona mapping each time."""

import random
import string
from collections.abc import Mapping, Sequence
from dataclasses import dataclass

from persona_council.models import Persona

ALPHABET = string.ascii_uppercase


def make_labels(count: int) -> list[str]:
    """Return ``count`` labels: A..Z, then AA, AB, ... for rosters beyond 26."""
    labels: list[str] = []
    for index in range(count):
        label = ""
        n = index + 1
        while n:
            n, rem = divmod(n - 1, len(ALPHABET))
            label = ALPHABET[rem] + label
        labels.append(label)
    return labels


@dataclass(frozen=True)
class Ballot:
    voter_id: str
    own_label: str
    entries: tuple[tuple[str, str, str], ...]  # (label, persona_id, answer) in label order

    @property
    def mapping(self) -> dict[str, str]:
        """Label -> persona_id."""
        return {label: persona_id for label, persona_id, _ in self.entries}

    @property
    def text(self) -> str:
        return "\n".join(f"{label}. {answer}" for label, _, answer in self.entries)

    def resolve(self, label: str) -> str | None:
        """Persona id behind ``label``, or None when the label is not on this ballot."""
        return self.mapping.get(label)


def build_ballot(
    voter_id: str,
    personas: Sequence[Persona],
    answers: Mapping[str, str],
    rng: random.Random,
) -> Ballot:
    """Shuffle the round for one voter and label the result in alphabet order.

    Every call draws a new permutation from ``rng``; ballots are never shared
    between voters.

    Raises:
        ValueError: If the voter is not in the round or persona ids repeat.
    """
    persona_ids = [p.id for p in personas]
    if len(set(persona_ids)) != len(persona_ids):
        raise ValueError("Duplicate persona ids in round")
    if voter_id not in persona_ids:
        raise ValueError(f"Voter {voter_id!r} is not part of the round")

    rng.shuffle(persona_ids)
    labels = make_labels(len(persona_ids))
    entries = tuple(
        (label, persona_id, answers[persona_id])
        for label, persona_id in zip(labels, persona_ids)
    )
    own_label = next(label for label, persona_id, _ in entries if persona_id == voter_id)
    return Ballot(voter_id=voter_id, own_label=own_label, entries=entries)
