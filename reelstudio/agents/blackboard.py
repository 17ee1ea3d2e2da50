"""Shared blackboard: the agents' append-only memory and dialogue stream."""

import copy
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from reelstudio.schemas.dialogue import DialogueEvent, DialogueType


logger = logging.getLogger(__name__)


DialogueObserver = Callable[[DialogueEvent], None]


@dataclass(frozen=True)
class BlackboardEntry:
    """One recorded finding. Payload is a private deep copy."""
    agent: str
    findings: str
    payload: Dict[str, Any] = field(default_factory=dict)
    timestamp: float = field(default_factory=time.time)

    @property
    def log_line(self) -> str:
        return f"[{self.agent}] {self.findings}"


class SharedBlackboard:
    """Append-only log of agent findings plus the run's dialogue.

    Entries are never modified or removed. Payloads are deep-copied on write
    and on read, so no caller can mutate what another agent recorded.
    Every event is kept in ``dialogue`` and forwarded to the observer; an
    observer that raises is logged and otherwise ignored.
    """

    def __init__(self, observer: Optional[DialogueObserver] = None):
        self._entries: List[BlackboardEntry] = []
        self._dialogue: List[DialogueEvent] = []
        self._observer = observer

    @property
    def entries(self) -> Tuple[BlackboardEntry, ...]:
        return tuple(self._entries)

    @property
    def dialogue(self) -> Tuple[DialogueEvent, ...]:
        return tuple(self._dialogue)

    def record(
        self,
        agent: str,
        findings: str,
        payload: Optional[Dict[str, Any]] = None,
        role: str = ""
    ) -> BlackboardEntry:
        """Append a finding and emit it as a ``finding`` dialogue event.

        Args:
            agent: Name of the recording agent
            findings: One-line summary of what was found
            payload: Structured data backing the finding
            role: Agent role shown alongside the event

        Returns:
            The recorded entry
        """
        entry = BlackboardEntry(
            agent=agent,
            findings=findings,
            payload=copy.deepcopy(payload) if payload else {},
        )
        self._entries.append(entry)
        logger.info(entry.log_line)
        self._emit(DialogueEvent(agent=agent, role=role, message=findings, type=DialogueType.FINDING))
        return entry

    def say(
        self,
        agent: str,
        message: str,
        type: DialogueType = DialogueType.THOUGHT,
        role: str = ""
    ) -> DialogueEvent:
        """Emit a thought, debate or prompt event without recording a finding."""
        event = DialogueEvent(agent=agent, role=role, message=message, type=type)
        self._emit(event)
        return event

    def latest(self, agent: str) -> Optional[Dict[str, Any]]:
        """Deep copy of the most recent payload recorded by ``agent``."""
        for entry in reversed(self._entries):
            if entry.agent == agent:
                return copy.deepcopy(entry.payload)
        return None

    def log_lines(self) -> List[str]:
        """Flat ``[agent] findings`` lines in recording order."""
        return [entry.log_line for entry in self._entries]

    def digest(self, limit: int = 8) -> str:
        """The most recent findings, newline-joined, for inclusion in prompts."""
        lines = self.log_lines()
        return "\n".join(lines[-limit:]) if limit > 0 else ""

    def _emit(self, event: DialogueEvent) -> None:
        self._dialogue.append(event)
        if self._observer is None:
            return
        try:
            self._observer(event)
        except Exception:
            logger.exception(f"Dialogue observer failed on event from {event.agent}")
