import asyncio
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol
from uuid import uuid4

logger = logging.getLogger(__name__)

INITIALIZING = "initializing"
CAPTURING = "capturing"
CAPTURED = "captured"
COMPLETE = "complete"
ERROR = "error"
TERMINAL_STATES = (COMPLETE, ERROR)

TOTAL_SPECIMENS = 3


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def capturing_attempt(n: int) -> str:
    return f"capturing_attempt_{n}"


def attempt_complete(n: int) -> str:
    return f"attempt_{n}_complete"


def capturing_specimen(n: int) -> str:
    return f"capturing_specimen_{n}"


def specimen_captured(n: int) -> str:
    return f"specimen_{n}_captured"


class SessionStateError(RuntimeError):
    """A terminal session was asked to move to another state."""


@dataclass
class Specimen:
    template: Dict[str, Any]
    quality_score: float
    specimen_number: int
    attempt_number: int
    device_name: Optional[str]
    is_native: bool
    captured_at: datetime = field(default_factory=utcnow)

    def summary(self) -> Dict[str, Any]:
        return {
            "specimenNumber": self.specimen_number,
            "qualityScore": self.quality_score,
            "capturedAt": self.captured_at.isoformat(),
        }


@dataclass
class EnrollmentSession:
    user_id: int
    finger_id: int
    user_name: Optional[str] = None
    strategy: Optional[str] = None
    enrollment_id: str = field(default_factory=lambda: str(uuid4()))
    status: str = INITIALIZING
    current_specimen: int = 0
    total_specimens: int = TOTAL_SPECIMENS
    quality_scores: List[float] = field(default_factory=list)
    specimens: List[Specimen] = field(default_factory=list)
    samples_collected: Optional[int] = None
    avg_quality: Optional[float] = None
    template_base64: Optional[str] = None
    template_size: Optional[int] = None
    detected_finger: Optional[int] = None
    requested_finger: Optional[int] = None
    finger_mismatch: bool = False
    error: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    start_time: datetime = field(default_factory=utcnow)
    last_update: datetime = None

    def __post_init__(self):
        if self.requested_finger is None:
            self.requested_finger = self.finger_id
        if self.last_update is None:
            self.last_update = self.start_time

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES

    def touch(self) -> None:
        # lastUpdate never moves backwards, even if the wall clock does
        self.last_update = max(utcnow(), self.last_update)

    def transition(self, status: str) -> None:
        if self.is_terminal and status != self.status:
            raise SessionStateError(
                f"Enrollment {self.enrollment_id} is already {self.status}; cannot move to {status}"
            )
        logger.info(f"Enrollment {self.enrollment_id}: {self.status} -> {status}")
        self.status = status
        self.touch()

    def fail(self, message: str) -> None:
        if self.is_terminal:
            logger.warning(f"Enrollment {self.enrollment_id} already {self.status}; ignoring error: {message}")
            return
        self.error = message
        self.transition(ERROR)


_ATTEMPT_COMPLETE = re.compile(r"^attempt_(\d+)_complete$")
_SPECIMEN_CAPTURED = re.compile(r"^specimen_(\d+)_captured$")

_STATUS_MESSAGES = {
    INITIALIZING: "Initializing enrollment...",
    CAPTURING: "Starting capture process...",
    CAPTURED: "All samples captured - awaiting confirmation",
    COMPLETE: "Enrollment complete - awaiting confirmation",
    ERROR: "Enrollment failed",
}


def progress_message(status: str, current_specimen: int = 0, total: int = TOTAL_SPECIMENS) -> str:
    if status in _STATUS_MESSAGES:
        return _STATUS_MESSAGES[status]
    if status.startswith("capturing_attempt_"):
        return f"Capturing attempt {current_specimen}/{total}..."
    if status.startswith("capturing_specimen_"):
        return f"Capturing specimen {current_specimen}/{total}..."
    match = _ATTEMPT_COMPLETE.match(status)
    if match:
        return f"Attempt {match.group(1)}/{total} completed successfully"
    match = _SPECIMEN_CAPTURED.match(status)
    if match:
        return f"Specimen {match.group(1)}/{total} captured"
    return "Processing..."


class ProgressStore(Protocol):
    def get(self, enrollment_id: str) -> Optional[EnrollmentSession]: ...

    def set(self, session: EnrollmentSession) -> None: ...

    def delete(self, enrollment_id: str) -> bool: ...

    def expire_after(self, enrollment_id: str, seconds: float) -> None: ...


class InMemoryProgressStore:
    """Enrollment sessions held in process memory; lost on restart."""

    def __init__(self):
        self._sessions: Dict[str, EnrollmentSession] = {}
        self._timers: Dict[str, asyncio.TimerHandle] = {}

    def get(self, enrollment_id: str) -> Optional[EnrollmentSession]:
        return self._sessions.get(enrollment_id)

    def set(self, session: EnrollmentSession) -> None:
        self._sessions[session.enrollment_id] = session

    def delete(self, enrollment_id: str) -> bool:
        timer = self._timers.pop(enrollment_id, None)
        if timer:
            timer.cancel()
        return self._sessions.pop(enrollment_id, None) is not None

    def expire_after(self, enrollment_id: str, seconds: float) -> None:
        timer = self._timers.pop(enrollment_id, None)
        if timer:
            timer.cancel()
        loop = asyncio.get_running_loop()
        self._timers[enrollment_id] = loop.call_later(seconds, self._expire, enrollment_id)

    def _expire(self, enrollment_id: str) -> None:
        self._timers.pop(enrollment_id, None)
        if self._sessions.pop(enrollment_id, None) is not None:
            logger.info(f"Enrollment {enrollment_id} expired from progress tracking")

    def clear(self) -> None:
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()
        self._sessions.clear()

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, enrollment_id: str) -> bool:
        return enrollment_id in self._sessions
