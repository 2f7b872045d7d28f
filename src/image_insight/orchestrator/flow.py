"""Session orchestrator: owns transient results and sequences the pipeline calls."""

from __future__ import annotations

import threading
import time
from dataclasses import replace
from typing import Any, Callable, Dict, Optional

import requests

from ..config import Settings
from ..domain.models import AppConfiguration, EmailDraft, ExtractionResult, PipelineRequest
from ..errors import InsightError, PreconditionNotMet, StageBusy
from ..gemini.client import GeminiClient
from ..logging import get_logger
from ..store import (
    ConfigurationStore,
    DocumentStore,
    LocalIdentityProvider,
    SqliteDocumentStore,
    acquire_user_id,
)
from . import derived
from .extract import extract_content
from .state import StageState, StageStatus
from .webhook import WebhookDispatcher


LOG = get_logger("orchestrator-flow")

SAVED_MESSAGE_SECONDS = 2.0


class InsightSession:
    """One user's session: cached configuration plus the three pipeline stages.

    Every state change happens under ``_lock``; network calls run outside
    it so the configuration subscription and other stages stay responsive.
    """

    def __init__(
        self,
        settings: Settings,
        *,
        config_store: Optional[ConfigurationStore] = None,
        http_session: Optional[requests.Session] = None,
        webhook_session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings
        self.config_store = config_store
        self._http = http_session or requests.Session()
        self._sleep = sleep
        self._clock = clock
        self._lock = threading.RLock()
        self._unsubscribe: Optional[Callable[[], None]] = None

        self.config = AppConfiguration(api_key=settings.seed_api_key or "")
        self.image: Optional[PipelineRequest] = None
        self.result: Optional[ExtractionResult] = None
        self.summary: Optional[str] = None
        self.email_draft: Optional[EmailDraft] = None

        self.analysis = StageStatus()
        self.summary_stage = StageStatus()
        self.email_stage = StageStatus()
        self._generation = 0
        # Held from extraction start until webhook dispatch returns
        self._pipeline_busy = False

        self._config_open = False
        self._saved_until: Optional[float] = None

        self.webhook = WebhookDispatcher(
            lambda: self.config.webhook_url,
            timeout=settings.http_timeout,
            session=webhook_session,
        )

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------
    def attach_store(self) -> None:
        """Subscribe to the configuration document for the session lifetime."""
        if self.config_store is None or self._unsubscribe is not None:
            return
        self._unsubscribe = self.config_store.load(
            self.apply_configuration,
            on_error=lambda exc: LOG.error(f"Error listening to configuration: {exc}"),
        )

    def close(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def apply_configuration(self, config: AppConfiguration) -> None:
        """Overwrite the cached configuration; no merge with local edits."""
        with self._lock:
            self.config = replace(config, field_mappings=dict(config.field_mappings))
        LOG.debug(f"Applied configuration: {config.redacted()}")

    def open_configuration(self) -> None:
        with self._lock:
            self._config_open = True
            self._saved_until = None

    def save_configuration(self, config: AppConfiguration) -> None:
        if self.config_store is None:
            raise PreconditionNotMet("No configuration store is available")
        try:
            self.config_store.save(config)
        except Exception as exc:
            LOG.error(f"Error saving configuration: {exc}")
            raise
        self.apply_configuration(config)
        with self._lock:
            self._saved_until = self._clock() + SAVED_MESSAGE_SECONDS

    def _expire_saved_message(self) -> None:
        if self._saved_until is not None and self._clock() >= self._saved_until:
            self._saved_until = None
            self._config_open = False

    @property
    def show_saved_message(self) -> bool:
        with self._lock:
            self._expire_saved_message()
            return self._saved_until is not None

    @property
    def config_open(self) -> bool:
        with self._lock:
            self._expire_saved_message()
            return self._config_open

    # ------------------------------------------------------------------
    # Input and gating
    # ------------------------------------------------------------------
    def set_image(self, image: PipelineRequest) -> None:
        with self._lock:
            self.image = image
        LOG.info(f"Image selected ({image.mime_type})")

    def _analyze_ready(self) -> bool:
        return bool(self.image and self.config.api_key) and not self._pipeline_busy

    @property
    def pipeline_busy(self) -> bool:
        with self._lock:
            return self._pipeline_busy

    @property
    def can_analyze(self) -> bool:
        with self._lock:
            return self._analyze_ready()

    @property
    def can_derive(self) -> bool:
        with self._lock:
            return (
                self.analysis.state is StageState.SUCCEEDED
                and self.result is not None
                and bool(self.result.original_text)
                and bool(self.config.api_key)
            )

    def _client(self, api_key: str) -> GeminiClient:
        return GeminiClient(
            api_key,
            model=self.settings.gemini_model,
            base_url=self.settings.gemini_base_url,
            timeout=self.settings.http_timeout,
            session=self._http,
            sleep=self._sleep,
        )

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------
    def analyze(self) -> bool:
        """Run extraction then webhook dispatch. Returns True on extraction success.

        Raises PreconditionNotMet (no image / key) or StageBusy before any I/O.
        The pipeline stays busy until the dispatch has finished, so a second
        analysis cannot overwrite the webhook status of this one.
        """
        with self._lock:
            if self._pipeline_busy:
                LOG.warning("Analysis already in progress; ignoring request")
                raise StageBusy("An analysis is already in progress")
            if self.image is None:
                LOG.error("No image to analyze.")
                raise PreconditionNotMet("No image to analyze")
            if not self.config.api_key:
                LOG.error("Please configure your API key.")
                raise PreconditionNotMet("An API key is required")
            self.result = None
            self.summary = None
            self.email_draft = None
            self.summary_stage.reset()
            self.email_stage.reset()
            self.webhook.reset()
            self.analysis.start()
            self._pipeline_busy = True
            self._generation += 1
            image = self.image
            api_key = self.config.api_key

        try:
            return self._extract_and_dispatch(image, api_key)
        finally:
            with self._lock:
                self._pipeline_busy = False

    def _extract_and_dispatch(self, image: PipelineRequest, api_key: str) -> bool:
        try:
            result = extract_content(image, api_key, client=self._client(api_key))
        except InsightError as exc:
            LOG.error(f"Error calling Gemini API: {exc}")
            with self._lock:
                self.analysis.fail(str(exc))
            return False

        with self._lock:
            self.result = result
            self.analysis.succeed()

        try:
            self.webhook.dispatch(result)
        except InsightError as exc:
            LOG.warning(f"Webhook dispatch failed; extraction result kept: {exc}")
        return True

    def _derive(
        self,
        stage: StageStatus,
        name: str,
        call: Callable[[str, str], Any],
        assign: Callable[[Any], None],
    ) -> bool:
        with self._lock:
            if stage.in_flight:
                raise StageBusy(f"{name} already in progress")
            if not self.can_derive:
                raise PreconditionNotMet(f"{name} needs a successful analysis and an API key")
            stage.start()
            text = self.result.original_text
            api_key = self.config.api_key
            generation = self._generation

        try:
            value = call(text, api_key)
        except InsightError as exc:
            LOG.error(f"Error generating {name}: {exc}")
            with self._lock:
                if generation == self._generation:
                    stage.fail(str(exc))
            return False

        with self._lock:
            if generation != self._generation:
                LOG.info(f"Discarding {name} for a superseded analysis")
                return False
            assign(value)
            stage.succeed()
        return True

    def summarize(self) -> bool:
        return self._derive(
            self.summary_stage,
            "summary",
            lambda text, key: derived.summarize(text, key, client=self._client(key)),
            lambda value: setattr(self, "summary", value),
        )

    def draft_email(self) -> bool:
        return self._derive(
            self.email_stage,
            "email draft",
            lambda text, key: derived.draft_email(text, key, client=self._client(key)),
            lambda value: setattr(self, "email_draft", value),
        )

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------
    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            self._expire_saved_message()
            return {
                "hasImage": self.image is not None,
                "hasApiKey": bool(self.config.api_key),
                "canAnalyze": self._analyze_ready(),
                "pipelineBusy": self._pipeline_busy,
                "canDerive": self.can_derive,
                "analysis": self.analysis.as_dict(),
                "summaryStage": self.summary_stage.as_dict(),
                "emailStage": self.email_stage.as_dict(),
                "result": self.result.to_dict() if self.result else None,
                "summary": self.summary,
                "emailDraft": self.email_draft.to_dict() if self.email_draft else None,
                "webhook": self.webhook.status.as_dict(),
                "configOpen": self._config_open,
                "showSavedMessage": self._saved_until is not None,
            }


def build_session(
    settings: Settings,
    *,
    store: Optional[DocumentStore] = None,
    identity_provider: Optional[LocalIdentityProvider] = None,
    **kwargs: Any,
) -> InsightSession:
    """Sign in, open the document store and return a subscribed session."""
    provider = identity_provider or LocalIdentityProvider(settings.root_dir)
    user_id = acquire_user_id(provider, settings.initial_auth_token)
    doc_store = store if store is not None else SqliteDocumentStore(settings.store_path)
    config_store = ConfigurationStore(doc_store, app_id=settings.app_id, user_id=user_id)

    LOG.info("Session configuration prepared")
    LOG.info(f"Gemini model       : {settings.gemini_model}")
    LOG.info(f"App id             : {settings.app_id}")
    LOG.info(f"User id            : {user_id}")
    LOG.info(f"Config document    : {config_store.path}")
    LOG.info(f"HTTP timeout       : {settings.http_timeout}s")

    session = InsightSession(settings, config_store=config_store, **kwargs)
    session.attach_store()
    return session
