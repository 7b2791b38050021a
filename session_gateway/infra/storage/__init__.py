"""File-backed storage for credentials and chat stores."""

from session_gateway.infra.storage.chat_store import STORE_FILE_SUFFIX, ChatStoreRepository
from session_gateway.infra.storage.credentials import CredentialStore, empty_auth_state

__all__ = [
    "STORE_FILE_SUFFIX",
    "ChatStoreRepository",
    "CredentialStore",
    "empty_auth_state",
]
