"""Durable authentication material for sessions.

Layout under the sessions directory:

- Modern sessions: ``md_<session_id>/`` holding ``creds.json`` plus one
  ``<category>-<key id>.json`` file per signal key entry.
- Legacy sessions: a single ``legacy_<session_id>.json`` blob.

Auth state is an opaque mapping ``{"creds": {...}, "keys": {category: {id:
value}}}`` handed to the protocol engine, which mutates it in place. Only the
connection supervisor writes credentials; the chat store never touches them.
"""

import asyncio
import json
import logging
import os
import re
import shutil
import tempfile
from pathlib import Path
from typing import Any

from session_gateway.domain.exceptions import StorageIOError
from session_gateway.domain.models import SessionMode
from session_gateway.infra.storage.chat_store import STORE_FILE_SUFFIX

logger = logging.getLogger(__name__)

CREDS_FILE = "creds.json"

_UNSAFE_FILE_CHARS = re.compile(r"[/\\:]")


def empty_auth_state() -> dict[str, Any]:
    """Fresh auth state for a session that has never paired."""
    return {"creds": {}, "keys": {}}


def _key_file_name(category: str, key_id: str) -> str:
    return _UNSAFE_FILE_CHARS.sub("_", f"{category}-{key_id}") + ".json"


def _atomic_write_json(path: Path, data: Any) -> None:
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f)
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class CredentialStore:
    """Loads and saves auth state for modern and legacy sessions."""

    def __init__(self, sessions_dir: Path) -> None:
        """Initialize credential store.

        Args:
            sessions_dir: Root directory shared with chat store files
        """
        self.sessions_dir = Path(sessions_dir)

    def path_for(self, session_id: str, mode: SessionMode) -> Path:
        """Return the credential directory (modern) or file (legacy)."""
        if mode.is_legacy:
            return self.sessions_dir / f"{mode.value}_{session_id}.json"
        return self.sessions_dir / f"{mode.value}_{session_id}"

    # ------------------------------------------------------------------
    # Blocking helpers (run in a worker thread)
    # ------------------------------------------------------------------

    def _load_modern(self, directory: Path) -> dict[str, Any]:
        state = empty_auth_state()
        if not directory.is_dir():
            return state

        creds_path = directory / CREDS_FILE
        if creds_path.exists():
            with open(creds_path, encoding="utf-8") as f:
                state["creds"] = json.load(f)

        for key_path in directory.glob("*.json"):
            if key_path.name == CREDS_FILE:
                continue
            with open(key_path, encoding="utf-8") as f:
                entry = json.load(f)
            # Category and id come from the file body, not the sanitized name
            if isinstance(entry, dict) and "category" in entry and "id" in entry:
                state["keys"].setdefault(entry["category"], {})[entry["id"]] = entry.get(
                    "value"
                )
        return state

    def _save_modern(self, directory: Path, state: dict[str, Any]) -> None:
        directory.mkdir(parents=True, exist_ok=True)
        _atomic_write_json(directory / CREDS_FILE, state.get("creds") or {})
        for category, entries in (state.get("keys") or {}).items():
            for key_id, value in entries.items():
                key_path = directory / _key_file_name(category, str(key_id))
                if value is None:
                    key_path.unlink(missing_ok=True)
                    continue
                _atomic_write_json(
                    key_path, {"category": category, "id": key_id, "value": value}
                )

    def _load_legacy(self, path: Path) -> dict[str, Any]:
        if not path.exists():
            return empty_auth_state()
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        state = empty_auth_state()
        if isinstance(data, dict):
            state.update(data)
        return state

    def _save_legacy(self, path: Path, state: dict[str, Any]) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        _atomic_write_json(path, state)

    def _remove(self, path: Path) -> None:
        if path.is_dir():
            shutil.rmtree(path)
        else:
            path.unlink(missing_ok=True)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def load(self, session_id: str, mode: SessionMode) -> dict[str, Any]:
        """Load auth state, creating fresh material when none is stored.

        Unreadable credentials are logged and replaced by fresh material,
        which makes the engine start a new pairing.

        Args:
            session_id: Session identity
            mode: Session mode

        Returns:
            Auth state mapping
        """
        path = self.path_for(session_id, mode)
        loader = self._load_legacy if mode.is_legacy else self._load_modern
        try:
            return await asyncio.to_thread(loader, path)
        except (OSError, ValueError) as e:
            logger.error(
                "Credentials could not be loaded, starting with fresh auth state",
                extra={"session_id": session_id, "path": str(path), "error": str(e)},
            )
            return empty_auth_state()

    async def save(self, session_id: str, mode: SessionMode, state: dict[str, Any]) -> None:
        """Persist auth state.

        Raises:
            StorageIOError: If the write fails
        """
        path = self.path_for(session_id, mode)
        saver = self._save_legacy if mode.is_legacy else self._save_modern
        try:
            await asyncio.to_thread(saver, path, state)
        except (OSError, TypeError, ValueError) as e:
            raise StorageIOError(
                f"Failed to save credentials for {session_id}: {e}",
                context={"session_id": session_id, "path": str(path)},
            ) from e

    async def remove(self, session_id: str, mode: SessionMode) -> None:
        """Delete stored credentials. Failures are logged."""
        path = self.path_for(session_id, mode)
        try:
            await asyncio.to_thread(self._remove, path)
        except OSError as e:
            logger.error(
                "Credentials could not be removed",
                extra={"session_id": session_id, "path": str(path), "error": str(e)},
            )

    def list_stored(self) -> list[tuple[str, SessionMode]]:
        """List sessions with credentials on disk.

        Returns:
            (session_id, mode) pairs found in the sessions directory
        """
        if not self.sessions_dir.is_dir():
            return []

        found: list[tuple[str, SessionMode]] = []
        for entry in sorted(self.sessions_dir.iterdir()):
            name = entry.name
            if name.endswith(STORE_FILE_SUFFIX):
                continue
            if name.startswith("md_") and entry.is_dir():
                found.append((name[len("md_"):], SessionMode.MODERN))
            elif name.startswith("legacy_") and name.endswith(".json") and entry.is_file():
                found.append((name[len("legacy_"):-len(".json")], SessionMode.LEGACY))
        return found
