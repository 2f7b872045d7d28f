"""Pipeline calls and the session orchestrator that sequences them."""

from .derived import draft_email, summarize
from .extract import extract_content
from .flow import InsightSession, build_session
from .state import StageState, StageStatus, WebhookState, WebhookStatus
from .webhook import WebhookDispatcher

__all__ = [
    "draft_email",
    "summarize",
    "extract_content",
    "InsightSession",
    "build_session",
    "StageState",
    "StageStatus",
    "WebhookState",
    "WebhookStatus",
    "WebhookDispatcher",
]
