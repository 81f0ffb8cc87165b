"""Progress events for a live round and the bounded channel that carries them.

A round narrates itself as

    phase(answers) -> answer x N -> phase(voting) -> vote x N -> winner -> complete

or stops early with a single ``error``. Events are immutable values; whoever
consumes them (the CLI renderer, the HTTP stream) folds them into its own
view. ``encode_event`` gives the newline-delimited JSON wire form.
"""

import asyncio
import json
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import ClassVar

from persona_council.models import CouncilResult

logger = logging.getLogger(__name__)

PHASE_ANSWERS = "answers"
PHASE_VOTING = "voting"


@dataclass(frozen=True)
class PhaseEvent:
    type: ClassVar[str] = "phase"
    phase: str
    message: str

    def to_dict(self) -> dict:
        return {"type": self.type, "phase": self.phase, "message": self.message}


@dataclass(frozen=True)
class AnswerEvent:
    type: ClassVar[str] = "answer"
    persona_id: str
    persona_name: str
    answer: str
    current: int
    total: int

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "personaId": self.persona_id,
            "personaName": self.persona_name,
            "answer": self.answer,
            "progress": {"current": self.current, "total": self.total},
        }


@dataclass(frozen=True)
class VoteEvent:
    type: ClassVar[str] = "vote"
    persona_id: str
    persona_name: str
    voted_for: str | None
    voted_for_name: str | None
    vote_explanation: str
    current: int
    total: int

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "personaId": self.persona_id,
            "personaName": self.persona_name,
            "votedFor": self.voted_for,
            "votedForName": self.voted_for_name,
            "voteExplanation": self.vote_explanation,
            "progress": {"current": self.current, "total": self.total},
        }


@dataclass(frozen=True)
class WinnerEvent:
    type: ClassVar[str] = "winner"
    winner_id: str
    vote_counts: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"type": self.type, "winnerId": self.winner_id, "voteCounts": dict(self.vote_counts)}


@dataclass(frozen=True)
class CompleteEvent:
    type: ClassVar[str] = "complete"
    result: CouncilResult

    def to_dict(self) -> dict:
        return {"type": self.type, **self.result.to_dict()}


@dataclass(frozen=True)
class ErrorEvent:
    type: ClassVar[str] = "error"
    error: str

    def to_dict(self) -> dict:
        return {"type": self.type, "error": self.error}


CouncilEvent = PhaseEvent | AnswerEvent | VoteEvent | WinnerEvent | CompleteEvent | ErrorEvent

TERMINAL_TYPES = frozenset({CompleteEvent.type, ErrorEvent.type})


def is_terminal(event: CouncilEvent) -> bool:
    return event.type in TERMINAL_TYPES


def encode_event(event: CouncilEvent) -> str:
    """One NDJSON line."""
    return json.dumps(event.to_dict(), ensure_ascii=False) + "\n"


class ProgressEmitter:
    """Single-producer, single-consumer event channel.

    At most one event waits in the channel: ``emit`` suspends the round until
    the consumer has taken the previous one. After the terminal event nothing
    else goes out. Once the consumer detaches, ``emit`` returns immediately so
    the round can finish and commit without a reader.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[CouncilEvent] = asyncio.Queue(maxsize=1)
        self._finished = False
        self._detached = False

    @property
    def finished(self) -> bool:
        return self._finished

    @property
    def detached(self) -> bool:
        return self._detached

    async def emit(self, event: CouncilEvent) -> None:
        if self._finished:
            logger.warning("Dropping %s event emitted after the terminal event", event.type)
            return
        if is_terminal(event):
            self._finished = True
        if self._detached:
            return
        await self._queue.put(event)

    def detach(self) -> None:
        """Stop delivering events; pending and future events are discarded."""
        if self._detached:
            return
        self._detached = True
        while not self._queue.empty():
            self._queue.get_nowait()
        if not self._finished:
            logger.info("Progress consumer detached; round continues without a reader")

    async def events(self) -> AsyncIterator[CouncilEvent]:
        """Yield events in emission order, ending after the terminal one."""
        while not self._detached:
            event = await self._queue.get()
            yield event
            if is_terminal(event):
                return
