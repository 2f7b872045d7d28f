from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class StageState(str, Enum):
    IDLE = "idle"
    IN_FLIGHT = "in_flight"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class WebhookState(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class StageStatus:
    """Lifecycle of one pipeline stage (analysis, summary or email)."""

    state: StageState = StageState.IDLE
    error: Optional[str] = None

    @property
    def in_flight(self) -> bool:
        return self.state is StageState.IN_FLIGHT

    def start(self) -> None:
        self.state = StageState.IN_FLIGHT
        self.error = None

    def succeed(self) -> None:
        self.state = StageState.SUCCEEDED
        self.error = None

    def fail(self, reason: str) -> None:
        self.state = StageState.FAILED
        self.error = reason

    def reset(self) -> None:
        self.state = StageState.IDLE
        self.error = None

    def as_dict(self) -> Dict[str, Any]:
        return {"state": self.state.value, "error": self.error}


@dataclass
class WebhookStatus:
    state: WebhookState = WebhookState.IDLE
    message: str = ""

    def as_dict(self) -> Dict[str, Any]:
        return {"state": self.state.value, "message": self.message}
