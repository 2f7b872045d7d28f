from .config_store import ConfigurationStore, config_document_path
from .documents import DocumentStore, DocumentWatcher, MemoryDocumentStore, SqliteDocumentStore
from .identity import GUEST_USER_ID, LocalIdentityProvider, acquire_user_id

__all__ = [
    "ConfigurationStore",
    "config_document_path",
    "DocumentStore",
    "DocumentWatcher",
    "MemoryDocumentStore",
    "SqliteDocumentStore",
    "GUEST_USER_ID",
    "LocalIdentityProvider",
    "acquire_user_id",
]
