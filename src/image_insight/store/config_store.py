from __future__ import annotations

from typing import Callable, Optional

from ..domain.models import AppConfiguration
from ..logging import get_logger
from .documents import Document, DocumentStore

LOG = get_logger("config-store")

CONFIG_DOCUMENT_ID = "app-config"


def config_document_path(app_id: str, user_id: str) -> str:
    return f"artifacts/{app_id}/users/{user_id}/configurations/{CONFIG_DOCUMENT_ID}"


class ConfigurationStore:
    """Reads and writes one user's configuration document."""

    def __init__(self, store: DocumentStore, *, app_id: str, user_id: str) -> None:
        self.store = store
        self.app_id = app_id
        self.user_id = user_id
        self.path = config_document_path(app_id, user_id)

    def load(
        self,
        callback: Callable[[AppConfiguration], None],
        *,
        on_error: Optional[Callable[[Exception], None]] = None,
    ) -> Callable[[], None]:
        """Subscribe to the document; ``callback`` gets every new snapshot.

        Returns the unsubscribe function.
        """

        def _on_snapshot(data: Optional[Document]) -> None:
            if data is None:
                LOG.info("No configuration found in the document store.")
                return
            callback(AppConfiguration.from_document(data))
            LOG.info("Configuration loaded from the document store.")

        return self.store.subscribe(self.path, _on_snapshot, on_error=on_error)

    def get(self) -> Optional[AppConfiguration]:
        data = self.store.get(self.path)
        return AppConfiguration.from_document(data) if data is not None else None

    def save(self, config: AppConfiguration) -> None:
        """Overwrite the whole document; storage errors propagate."""
        self.store.set(self.path, config.to_document())
        LOG.info(f"Configuration saved to {self.path}")
