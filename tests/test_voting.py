"""Tests for persona_council/voting.py."""

import random

from persona_council.ballot import build_ballot
from persona_council.providers.base import ProviderError
from persona_council.voting import (
    VOTE_BAD_JSON,
    VOTE_ERROR,
    cast_vote,
    collect_votes,
    parse_vote,
    resolve_vote,
)
from tests.conftest import MockProvider, council_responder, vote_for, vote_raw, vote_self


def test_parse_vote_normalizes_label():
    assert parse_vote('{"vote": " b ", "vote_explanation": "clear"}') == ("B", "clear")


def test_parse_vote_non_json_is_bad_json():
    assert parse_vote("I pick B") == (None, VOTE_BAD_JSON)


def test_parse_vote_non_object_is_bad_json():
    assert parse_vote('"B"') == (None, VOTE_BAD_JSON)


def test_parse_vote_non_string_label_keeps_explanation():
    assert parse_vote('{"vote": 2, "vote_explanation": "second"}') == (None, "second")


def test_parse_vote_missing_explanation_is_empty():
    assert parse_vote('{"vote": "A"}') == ("A", "")


def test_resolve_vote_rejects_own_and_unknown_labels(sample_personas, sample_answers):
    ballot = build_ballot("p1", sample_personas, sample_answers, random.Random(2))
    assert resolve_vote(ballot.own_label, ballot) is None
    assert resolve_vote("Q", ballot) is None
    assert resolve_vote(None, ballot) is None
    other = next(label for label in ballot.mapping if label != ballot.own_label)
    assert resolve_vote(other, ballot) == ballot.mapping[other]


async def test_cast_vote_resolves_label(sample_personas, sample_answers, sample_prompts_config):
    ballot = build_ballot("p1", sample_personas, sample_answers, random.Random(4))
    responder = council_responder({}, {"directive alpha": vote_for("answer three", "thorough")})
    vote = await cast_vote(
        sample_personas[0], "Q?", ballot, MockProvider(responder=responder), sample_prompts_config
    )
    assert vote.target_id == "p3"
    assert ballot.mapping[vote.label] == "p3"
    assert vote.explanation == "thorough"


async def test_cast_vote_prompt_carries_own_label_and_ballot(
    sample_personas, sample_answers, sample_prompts_config
):
    ballot = build_ballot("p2", sample_personas, sample_answers, random.Random(8))
    provider = MockProvider(response_content='{"vote": "A", "vote_explanation": ""}')
    await cast_vote(sample_personas[1], "Q?", ballot, provider, sample_prompts_config)
    system_prompt, user_message = provider.generate.await_args.args
    assert system_prompt == "directive beta"
    assert f"own={ballot.own_label}" in user_message
    assert user_message.endswith(ballot.text)


async def test_self_vote_discarded(sample_personas, sample_answers, sample_prompts_config):
    ballot = build_ballot("p1", sample_personas, sample_answers, random.Random(4))
    responder = council_responder({}, {"directive alpha": vote_self("mine")})
    vote = await cast_vote(
        sample_personas[0], "Q?", ballot, MockProvider(responder=responder), sample_prompts_config
    )
    assert vote.target_id is None
    assert vote.label is None
    assert vote.explanation == "mine"


async def test_unknown_label_discarded(sample_personas, sample_answers, sample_prompts_config):
    ballot = build_ballot("p1", sample_personas, sample_answers, random.Random(4))
    provider = MockProvider(response_content='{"vote": "Q", "vote_explanation": "?"}')
    vote = await cast_vote(sample_personas[0], "Q?", ballot, provider, sample_prompts_config)
    assert vote.target_id is None


async def test_failed_vote_call_is_error_sentinel(sample_personas, sample_answers, sample_prompts_config):
    ballot = build_ballot("p1", sample_personas, sample_answers, random.Random(4))
    provider = MockProvider(responder=lambda s, u: ProviderError("mock", "timeout"))
    vote = await cast_vote(sample_personas[0], "Q?", ballot, provider, sample_prompts_config)
    assert (vote.target_id, vote.label, vote.explanation) == (None, None, VOTE_ERROR)


async def test_empty_vote_reply_is_bad_json(sample_personas, sample_answers, sample_prompts_config):
    ballot = build_ballot("p1", sample_personas, sample_answers, random.Random(4))
    provider = MockProvider(response_content="")
    vote = await cast_vote(sample_personas[0], "Q?", ballot, provider, sample_prompts_config)
    assert (vote.target_id, vote.label, vote.explanation) == (None, None, VOTE_BAD_JSON)


async def test_collect_votes_scenario_tally(sample_personas, sample_answers, sample_prompts_config):
    responder = council_responder(
        {},
        {
            "directive alpha": vote_for("answer three"),
            "directive beta": vote_for("answer three"),
            "directive gamma": vote_raw("not json at all"),
        },
    )
    votes, tally = await collect_votes(
        sample_personas,
        "Q?",
        sample_answers,
        MockProvider(responder=responder),
        sample_prompts_config,
        random.Random(11),
    )
    assert tally == {"p1": 0, "p2": 0, "p3": 2}
    assert [v.voter_id for v in votes] == ["p1", "p2", "p3"]
    assert votes[2].explanation == VOTE_BAD_JSON


async def test_no_vote_ever_targets_its_voter(sample_personas, sample_answers, sample_prompts_config):
    # Every persona tries every label; whatever resolves must never be self.
    for seed in range(10):
        rng = random.Random(seed)
        label = "ABC"[seed % 3]
        provider = MockProvider(response_content=f'{{"vote": "{label}", "vote_explanation": ""}}')
        votes, tally = await collect_votes(
            sample_personas, "Q?", sample_answers, provider, sample_prompts_config, rng
        )
        for vote in votes:
            assert vote.target_id != vote.voter_id
        assert sum(tally.values()) <= len(sample_personas)


class CountingRandom(random.Random):
    shuffles = 0

    def shuffle(self, x):
        self.shuffles += 1
        super().shuffle(x)


async def test_each_voter_gets_a_fresh_shuffle(sample_personas, sample_answers, sample_prompts_config):
    rng = CountingRandom(0)
    provider = MockProvider(response_content='{"vote": "A", "vote_explanation": ""}')
    await collect_votes(sample_personas, "Q?", sample_answers, provider, sample_prompts_config, rng)
    assert rng.shuffles == 3


async def test_on_vote_called_in_voter_order(sample_personas, sample_answers, sample_prompts_config):
    seen = []

    async def on_vote(voter, vote, current, total):
        seen.append((voter.id, current, total))

    provider = MockProvider(response_content='{"vote": "A", "vote_explanation": ""}')
    await collect_votes(
        sample_personas,
        "Q?",
        sample_answers,
        provider,
        sample_prompts_config,
        random.Random(0),
        on_vote=on_vote,
    )
    assert seen == [("p1", 1, 3), ("p2", 2, 3), ("p3", 3, 3)]
