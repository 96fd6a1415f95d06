"""File-backed persistence for the shared state snapshot."""

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)


class PersistenceError(OSError):
    """Raised when the state snapshot cannot be written."""


class StateStore:
    """Loads and saves the shared state as a pretty-printed JSON object.

    The file is human-editable and overwritten wholesale on every save.
    Only the latest snapshot is kept.
    """

    def __init__(self, path: Path) -> None:
        """Initialize store.

        Args:
            path: File holding the persisted state
        """
        self._path = Path(path)

    @property
    def path(self) -> Path:
        """Location of the persisted state file."""
        return self._path

    def load(self) -> dict[str, Any]:
        """Read the persisted state.

        Returns:
            The stored mapping, or an empty dict when the file is missing,
            unreadable, not JSON, or not a JSON object.
        """
        try:
            with open(self._path, encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            logger.info("No persisted state, starting empty", extra={"path": str(self._path)})
            return {}
        except (OSError, ValueError) as e:
            logger.warning(
                "Failed to read persisted state, starting empty",
                extra={"path": str(self._path), "error": str(e)},
            )
            return {}

        if not isinstance(data, dict):
            logger.warning(
                "Persisted state is not a JSON object, starting empty",
                extra={"path": str(self._path), "kind": type(data).__name__},
            )
            return {}

        logger.info(
            "Loaded persisted state",
            extra={"path": str(self._path), "keys": len(data)},
        )
        return data

    def save(self, state: dict[str, Any]) -> None:
        """Write the state snapshot, replacing the previous file.

        Data goes to a temporary sibling first and is then moved into place,
        so a crash mid-write leaves the previous snapshot intact.

        Args:
            state: Mapping to persist

        Raises:
            PersistenceError: If serialization or the write fails
        """
        try:
            text = json.dumps(state, indent=2, ensure_ascii=False, allow_nan=False)
        except (TypeError, ValueError) as e:
            raise PersistenceError(f"State is not JSON-serializable: {e}") from e

        directory = self._path.parent
        try:
            directory.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self._path.name}.", suffix=".tmp", dir=directory
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(text)
                    f.write("\n")
                os.replace(tmp_name, self._path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise PersistenceError(f"Failed to write state to {self._path}: {e}") from e

        logger.debug("State persisted", extra={"path": str(self._path), "keys": len(state)})
