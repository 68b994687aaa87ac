"""Service layer helpers (settings, document references)."""

from .document_refs import (
    DocumentChatScope,
    DocumentReferenceStore,
    InMemoryDocumentReferenceStore,
    JsonDocumentReferenceStore,
)
from .settings import DEFAULT_AGENT_ID, EndpointSettings, SecretVault, Settings, SettingsStore

__all__ = [
    "DEFAULT_AGENT_ID",
    "DocumentChatScope",
    "DocumentReferenceStore",
    "EndpointSettings",
    "InMemoryDocumentReferenceStore",
    "JsonDocumentReferenceStore",
    "SecretVault",
    "Settings",
    "SettingsStore",
]
