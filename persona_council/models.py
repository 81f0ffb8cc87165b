"""Pure dataclasses for the persona council round. No logic, no deps."""

from dataclasses import dataclass, field

ACTIVE = "active"
INACTIVE = "inactive"


@dataclass
class Persona:
    id: str
    name: str
    system_prompt: str
    status: str = ACTIVE   # "active" or "inactive"
    runs: int = 0
    wins: int = 0
    vote_score: int = 0


@dataclass
class ModelResponse:
    provider: str          # "openrouter", "openai", "anthropic", "gemini"
    model: str             # actual model string used
    content: str
    latency_sec: float
    token_count: int | None


@dataclass(frozen=True)
class Vote:
    voter_id: str
    target_id: str | None  # None: invalid, self, parse-failed or errored vote
    label: str | None
    explanation: str


@dataclass(frozen=True)
class StatsDelta:
    runs: int
    wins: int
    vote_score: int


@dataclass
class PersonaOutcome:
    """One persona's row in a committed round."""

    persona_id: str
    name: str
    answer: str
    vote_label: str | None
    voted_for: str | None
    vote_explanation: str
    is_winner: bool


@dataclass
class CouncilResult:
    answer: str
    winner_id: str
    vote_counts: dict[str, int]
    personas: list[PersonaOutcome]
    credits_left: int
    run_id: str

    def to_dict(self) -> dict:
        return {
            "answer": self.answer,
            "voteCounts": dict(self.vote_counts),
            "personas": [
                {
                    "id": p.persona_id,
                    "name": p.name,
                    "answer": p.answer,
                    "vote": p.voted_for,
                    "vote_explanation": p.vote_explanation,
                }
                for p in self.personas
            ],
            "creditsLeft": self.credits_left,
            "runId": self.run_id,
        }


@dataclass
class RunSummary:
    id: str
    created_at: str
    user_query: str
    winner_answer: str


@dataclass
class RunDetail:
    id: str
    created_at: str
    user_query: str
    winner_id: str
    winner_answer: str
    vote_counts: dict[str, int] = field(default_factory=dict)
    personas: list[PersonaOutcome] = field(default_factory=list)
