"""File-backed persistence for per-session chat stores.

Each session's store lives in ``<sessions_dir>/<session_id>_store.json``
with the shape ``{"chats": [...], "contacts": [...]}``.

Writes go to a temporary file in the same directory and are moved into
place with ``os.replace``, so a concurrent reader sees either the previous
or the new complete file. Reads merge with insert-if-absent semantics, so
hydrating never overwrites fresher in-memory entries. All failures are
logged and swallowed: the in-memory store stays authoritative until the
next successful flush.

Example:
    repo = ChatStoreRepository(Path("./sessions"))
    store = ChatStore()
    await repo.hydrate("alice", store)
    store.upsert_chats([{"id": "123@s.whatsapp.net"}])
    await repo.flush("alice", store)
"""

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

from session_gateway.domain.exceptions import StorageIOError
from session_gateway.domain.models import ChatStore
from session_gateway.infra.observability.metrics import record_store_flush

logger = logging.getLogger(__name__)

STORE_FILE_SUFFIX = "_store.json"


class ChatStoreRepository:
    """Reads and writes chat store blobs under a sessions directory."""

    def __init__(self, sessions_dir: Path) -> None:
        """Initialize repository.

        Args:
            sessions_dir: Root directory shared with credential storage
        """
        self.sessions_dir = Path(sessions_dir)

    def path_for(self, session_id: str) -> Path:
        """Return the store file path for a session."""
        return self.sessions_dir / f"{session_id}{STORE_FILE_SUFFIX}"

    def _read(self, path: Path) -> dict[str, Any] | None:
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            raise StorageIOError(
                f"Failed to read chat store {path}: {e}", context={"path": str(path)}
            ) from e

        if not isinstance(data, dict):
            raise StorageIOError(
                f"Chat store {path} is not a JSON object", context={"path": str(path)}
            )
        return data

    def _write(self, path: Path, data: dict[str, Any]) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=path.parent, prefix=f".{path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f)
                os.replace(tmp_name, path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except (OSError, TypeError, ValueError) as e:
            raise StorageIOError(
                f"Failed to write chat store {path}: {e}", context={"path": str(path)}
            ) from e

    async def hydrate(self, session_id: str, store: ChatStore) -> bool:
        """Merge the persisted blob into an in-memory store.

        A missing file counts as an empty store. Entries already in memory
        are kept as they are.

        Args:
            session_id: Session identity
            store: Store to merge into

        Returns:
            True if the durable state was merged (or absent), False on failure
        """
        path = self.path_for(session_id)
        try:
            data = await asyncio.to_thread(self._read, path)
        except StorageIOError as e:
            logger.warning(
                "Chat store could not be loaded, continuing with in-memory state",
                extra={"session_id": session_id, "path": str(path), "error": str(e)},
            )
            return False

        if data is not None:
            chats = data.get("chats") or []
            contacts = data.get("contacts") or []
            added = store.insert_chats_if_absent(chats)
            store.insert_contacts_if_absent(contacts)
            logger.debug(
                "Chat store hydrated",
                extra={"session_id": session_id, "chats_added": added},
            )

        store.disk_merged = True
        return True

    async def flush(self, session_id: str, store: ChatStore) -> bool:
        """Write the store to disk, replacing the previous file atomically.

        Args:
            session_id: Session identity
            store: Store to persist

        Returns:
            True on success, False if the write failed
        """
        path = self.path_for(session_id)
        snapshot = store.to_dict()
        try:
            await asyncio.to_thread(self._write, path, snapshot)
        except StorageIOError as e:
            record_store_flush(False)
            logger.error(
                "Chat store flush failed",
                extra={"session_id": session_id, "path": str(path), "error": str(e)},
            )
            return False

        record_store_flush(True)
        logger.debug(
            "Chat store flushed",
            extra={"session_id": session_id, "chats": len(snapshot["chats"])},
        )
        return True

    async def remove(self, session_id: str) -> None:
        """Delete the store file. Failures are logged."""
        path = self.path_for(session_id)
        try:
            await asyncio.to_thread(path.unlink, True)
        except OSError as e:
            logger.error(
                "Chat store file could not be removed",
                extra={"session_id": session_id, "path": str(path), "error": str(e)},
            )
