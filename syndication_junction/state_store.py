"""
State Store for the persisted feed document.

Loads and saves the whole Store as one JSON document. There are no
field-level transactions: a run loads once and saves once.
"""
import json
import shutil
import logging
from pathlib import Path
from typing import Optional

from syndication_junction.models import Store

logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    """Raised when the store document cannot be read, decoded or written."""

    def __init__(self, message: str, path: Optional[Path] = None):
        super().__init__(message)
        self.path = path


class StateStore:
    """
    Whole-document persistence for the Store.

    Not safe for more than one concurrent writer.
    """

    def __init__(self, state_file: Path):
        """
        Initialize state store.

        Args:
            state_file: Path to JSON store document
        """
        self.state_file = Path(state_file)

    def exists(self) -> bool:
        return self.state_file.exists()

    def load(self) -> Optional[Store]:
        """
        Load the store document.

        Returns:
            Store, or None if the document does not exist yet

        Raises:
            PersistenceError: If the document is unreadable or undecodable
        """
        if not self.state_file.exists():
            logger.info(f"No store document at {self.state_file}")
            return None

        try:
            with open(self.state_file, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except OSError as e:
            raise PersistenceError(f"Error reading {self.state_file}: {e}", path=self.state_file) from e
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            self._backup_corrupted()
            raise PersistenceError(
                f"Error decoding JSON from {self.state_file}: {e}", path=self.state_file
            ) from e

        try:
            store = Store.from_dict(data)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            self._backup_corrupted()
            raise PersistenceError(
                f"Malformed store document {self.state_file}: {e}", path=self.state_file
            ) from e

        logger.info(f"Loaded store from {self.state_file} ({len(store.sources)} sources)")
        return store

    def save(self, store: Store):
        """
        Save the store document atomically.

        Uses write-to-temp-then-rename so an interrupted write never leaves
        a truncated document behind.

        Raises:
            PersistenceError: If the document cannot be written
        """
        temp_file = self.state_file.with_suffix('.json.tmp')
        try:
            self.state_file.parent.mkdir(parents=True, exist_ok=True)
            with open(temp_file, 'w', encoding='utf-8') as f:
                json.dump(store.to_dict(), f, indent=2, ensure_ascii=False)
            temp_file.replace(self.state_file)
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to save store document: {e}")
            if temp_file.exists():
                try:
                    temp_file.unlink()
                except OSError as cleanup_error:
                    logger.warning(f"Failed to remove temp file {temp_file}: {cleanup_error}")
            raise PersistenceError(f"Error writing {self.state_file}: {e}", path=self.state_file) from e

        logger.debug(f"Saved store to {self.state_file}")

    def create_if_missing(self) -> bool:
        """
        Write a default store document if none exists.

        Returns:
            True if a document was created, False if one already existed

        Raises:
            PersistenceError: If the document cannot be written
        """
        if self.state_file.exists():
            logger.info(f"Skipping because {self.state_file} exists")
            return False

        self.save(Store())
        logger.info(f"Created store document at {self.state_file}")
        return True

    def _backup_corrupted(self):
        """Copy an undecodable document aside before it can be overwritten."""
        backup_path = self.state_file.with_suffix('.json.corrupted')
        try:
            shutil.copy2(self.state_file, backup_path)
            logger.info(f"Corrupted store document backed up to {backup_path}")
        except OSError as backup_error:
            logger.warning(f"Failed to back up corrupted store document: {backup_error}")
