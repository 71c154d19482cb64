"""JSON file persistence for paused and finished pipeline runs."""

import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from autoflow.config import get_settings
from autoflow.pipeline.state import PipelineState

logger = logging.getLogger(__name__)

_SAFE_ID = re.compile(r"^[A-Za-z0-9_.-]{1,128}$")


def _atomic_write_text(path: Path, content: str) -> None:
    """Write to a temporary file in the same directory, then rename into place."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as tmp_handle:
            tmp_handle.write(content)
            tmp_handle.flush()
            os.fsync(tmp_handle.fileno())
        os.replace(tmp_path, str(path))
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


class StateStore:
    """One JSON document per conversation under ``state_dir``."""

    def __init__(self, state_dir: Optional[Path] = None):
        """Initialize store.

        Args:
            state_dir: Directory for state files. Uses settings default if None.
        """
        self.state_dir = state_dir or get_settings().state_dir

    def _path(self, conversation_id: str) -> Path:
        if not _SAFE_ID.match(conversation_id):
            raise ValueError(f"Invalid conversation id: {conversation_id!r}")
        return self.state_dir / f"{conversation_id}.json"

    def save(self, state: PipelineState) -> Path:
        path = self._path(state.conversation_id)
        _atomic_write_text(path, json.dumps(state.to_map(), indent=2))
        logger.debug("Saved state for %s (%s)", state.conversation_id, state.status.value)
        return path

    def load(self, conversation_id: str) -> Optional[PipelineState]:
        """Load a conversation's state, or None if it was never saved.

        Raises:
            ValueError: If the stored document is not a valid PipelineState.
        """
        path = self._path(conversation_id)
        if not path.exists():
            return None
        try:
            return PipelineState.from_map(json.loads(path.read_text(encoding="utf-8")))
        except (json.JSONDecodeError, ValidationError) as e:
            raise ValueError(f"Corrupt state file {path}: {e}") from e

    def exists(self, conversation_id: str) -> bool:
        return self._path(conversation_id).exists()

    def list_ids(self) -> list[str]:
        if not self.state_dir.exists():
            return []
        return sorted(path.stem for path in self.state_dir.glob("*.json"))
