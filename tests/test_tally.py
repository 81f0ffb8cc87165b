"""Tests for persona_council/tally.py."""

import pytest

from persona_council.models import Vote
from persona_council.tally import new_tally, record_vote, resolve_winner


def test_new_tally_starts_at_zero(sample_personas):
    assert new_tally(sample_personas) == {"p1": 0, "p2": 0, "p3": 0}


def test_record_vote_counts_valid_votes(sample_personas):
    tally = new_tally(sample_personas)
    record_vote(tally, Vote("p1", "p3", "C", "good"))
    record_vote(tally, Vote("p2", "p3", "A", "good"))
    assert tally == {"p1": 0, "p2": 0, "p3": 2}


def test_record_vote_ignores_targetless_votes(sample_personas):
    tally = new_tally(sample_personas)
    record_vote(tally, Vote("p1", None, None, "bad json"))
    assert sum(tally.values()) == 0


def test_record_vote_rejects_target_outside_round(sample_personas):
    tally = new_tally(sample_personas)
    with pytest.raises(KeyError):
        record_vote(tally, Vote("p1", "p9", "D", "?"))


def test_winner_is_highest_count(sample_personas):
    assert resolve_winner(sample_personas, {"p1": 0, "p2": 1, "p3": 2}) == "p3"


def test_tie_goes_to_first_in_round_order(sample_personas):
    assert resolve_winner(sample_personas, {"p1": 2, "p2": 2, "p3": 1}) == "p1"
    assert resolve_winner(sample_personas, {"p1": 0, "p2": 1, "p3": 1}) == "p2"


def test_zero_votes_fall_back_to_first_persona(sample_personas):
    assert resolve_winner(sample_personas, new_tally(sample_personas)) == "p1"


def test_empty_round_rejected():
    with pytest.raises(ValueError):
        resolve_winner([], {})
