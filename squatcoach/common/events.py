from __future__ import annotations
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Optional

class EventType(str, Enum):
    SESSION_STARTED = "session_started"
    SESSION_PAUSED = "session_paused"
    SESSION_RESUMED = "session_resumed"
    SESSION_STOPPED = "session_stopped"
    REP = "rep"
    FAULT = "fault"
    PULSE = "pulse"
    OUTCOME = "outcome"
    TRACE = "trace"


class _Event:
    def to_dict(self) -> dict:
        d = asdict(self)
        d["type"] = self.type.value
        return d

@dataclass
class SessionEvent(_Event):
    type: EventType
    session_id: str
    ts: float
    correct: int = 0
    incorrect: int = 0
    outcome: Optional[str] = None  # "success" | "failure" on policy stop

@dataclass
class RepEvent(_Event):
    type: EventType
    session_id: str
    ts: float
    outcome: str            # "correct" | "incorrect"
    correct: int
    incorrect: int
    feedback: str
    knee_deg: float = 0.0

@dataclass
class FaultEvent(_Event):
    type: EventType
    session_id: str
    ts: float
    fault: str              # e.g. "back_angle", "knee_over_toe", "too_deep"
    feedback: str
