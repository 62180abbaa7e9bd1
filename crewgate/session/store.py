"""On-disk persistence for transcripts, queues and session metadata."""

import json
import logging
import os
import re
from pathlib import Path
from typing import Optional, Union

from pydantic import ValidationError

from crewgate.constants import METADATA_FILENAME, SESSIONS_DIRNAME
from crewgate.models import (
    MESSAGES_ADAPTER,
    METADATA_ADAPTER,
    QUEUE_ADAPTER,
    Message,
    QueuedPrompt,
    SessionMetadata,
    utc_now,
)

logger = logging.getLogger(__name__)

_SESSION_ID = re.compile(r"^[A-Za-z0-9_.-]+$")


def validate_session_id(session_id: str) -> str:
    """Reject ids that could escape the sessions directory.

    Raises:
        ValueError: If the id is empty, "." / "..", or has other characters
    """
    if not _SESSION_ID.match(session_id or "") or session_id in (".", ".."):
        raise ValueError(f"Invalid session id: {session_id!r}")
    return session_id


class SessionStore:
    """JSON files under the data directory.

    Layout:
        <data_dir>/sessions-metadata.json
        <data_dir>/agent-sessions/<id>.json
        <data_dir>/agent-sessions/<id>-queue.json

    Missing or corrupt files read as empty.
    """

    def __init__(self, data_dir: Union[str, Path]):
        self.data_dir = Path(data_dir)
        self.sessions_dir = self.data_dir / SESSIONS_DIRNAME
        self.metadata_file = self.data_dir / METADATA_FILENAME

    def initialize(self) -> None:
        self.sessions_dir.mkdir(parents=True, exist_ok=True)

    def transcript_path(self, session_id: str) -> Path:
        return self.sessions_dir / f"{validate_session_id(session_id)}.json"

    def queue_path(self, session_id: str) -> Path:
        return self.sessions_dir / f"{validate_session_id(session_id)}-queue.json"

    # Transcripts

    def load_messages(self, session_id: str) -> list[Message]:
        data = self._read_json(self.transcript_path(session_id))
        if data is None:
            return []
        try:
            return MESSAGES_ADAPTER.validate_python(data)
        except ValidationError as e:
            logger.warning("Ignoring corrupt transcript for %s: %s", session_id, e)
            return []

    def save_messages(self, session_id: str, messages: list[Message]) -> None:
        """Write the transcript and bump the session's updated_at.

        Write failures are logged, not raised: the in-memory state stays authoritative.
        """
        try:
            self._write_json(self.transcript_path(session_id), MESSAGES_ADAPTER.dump_python(messages, mode="json"))
            self.touch(session_id)
        except OSError:
            logger.exception("Failed to save session %s", session_id)

    # Queues

    def load_queue(self, session_id: str) -> list[QueuedPrompt]:
        data = self._read_json(self.queue_path(session_id))
        if data is None:
            return []
        try:
            return QUEUE_ADAPTER.validate_python(data)
        except ValidationError as e:
            logger.warning("Ignoring corrupt queue for %s: %s", session_id, e)
            return []

    def save_queue(self, session_id: str, queue: list[QueuedPrompt]) -> None:
        try:
            self._write_json(self.queue_path(session_id), QUEUE_ADAPTER.dump_python(queue, mode="json"))
        except OSError:
            logger.exception("Failed to save queue state for %s", session_id)

    # Metadata

    def load_metadata(self) -> dict[str, SessionMetadata]:
        data = self._read_json(self.metadata_file)
        if data is None:
            return {}
        try:
            return METADATA_ADAPTER.validate_python(data)
        except ValidationError as e:
            logger.warning("Ignoring corrupt session metadata: %s", e)
            return {}

    def save_metadata(self, metadata: dict[str, SessionMetadata]) -> None:
        self._write_json(self.metadata_file, METADATA_ADAPTER.dump_python(metadata, mode="json"))

    def get_metadata(self, session_id: str) -> Optional[SessionMetadata]:
        return self.load_metadata().get(session_id)

    def put_metadata(self, entry: SessionMetadata) -> SessionMetadata:
        validate_session_id(entry.id)
        metadata = self.load_metadata()
        metadata[entry.id] = entry
        self.save_metadata(metadata)
        return entry

    def update_metadata(self, session_id: str, **updates) -> Optional[SessionMetadata]:
        """Merge updates into an existing entry and bump updated_at.

        Returns:
            The updated entry, or None if the session has no metadata
        """
        metadata = self.load_metadata()
        current = metadata.get(session_id)
        if current is None:
            return None
        updated = current.model_copy(update={**updates, "updated_at": utc_now()})
        metadata[session_id] = updated
        self.save_metadata(metadata)
        return updated

    def touch(self, session_id: str) -> None:
        metadata = self.load_metadata()
        if session_id in metadata:
            metadata[session_id].updated_at = utc_now()
            self.save_metadata(metadata)

    def delete(self, session_id: str) -> bool:
        """Remove metadata, transcript and queue file.

        Returns:
            False if the session had no metadata entry
        """
        metadata = self.load_metadata()
        if session_id not in metadata:
            return False
        del metadata[session_id]
        self.save_metadata(metadata)

        for path in (self.transcript_path(session_id), self.queue_path(session_id)):
            try:
                path.unlink()
            except FileNotFoundError:
                pass
        return True

    def _read_json(self, path: Path):
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Could not read %s: %s", path, e)
            return None

    def _write_json(self, path: Path, data) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        temp_path = path.with_name(f".{path.name}.{os.getpid()}.tmp")
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
            temp_path.replace(path)
        except OSError:
            if temp_path.exists():
                temp_path.unlink()
            raise
