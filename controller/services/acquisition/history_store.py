"""
History Store

Per-device rolling history kept as one JSON file per device
(device_<id>.json). Every append rewrites the whole file after dropping
entries older than the retention window, so the file never holds stale data.

Full rewrite on every append is fine at a few devices polled every couple of
seconds; segmenting the files would be the next step for larger sites.
"""

import asyncio
import json
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any

from common.exceptions import PersistenceError
from common.logging_setup import get_service_logger
from .models import Reading, parse_timestamp

logger = get_service_logger("acquisition.history")


class HistoryStore:
    """
    Append-and-trim flat history files.

    The blocking methods (append_sync, load_sync) raise PersistenceError;
    the async wrappers run them in the default executor and log failures
    instead of raising, so polling is never interrupted by disk problems.
    """

    def __init__(
        self,
        data_dir: str | Path,
        retention: timedelta = timedelta(hours=24),
    ):
        self.data_dir = Path(data_dir)
        self.retention = retention
        self._lock = threading.Lock()

    def path_for(self, device_id: int | str) -> Path:
        """History file of a device"""
        return self.data_dir / f"device_{device_id}.json"

    async def append(self, device_id: int | str, reading: Reading) -> bool:
        """
        Append a reading and trim the device's history.

        Returns:
            True if the history file was written
        """
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self.append_sync, device_id, reading)
            return True
        except PersistenceError as e:
            logger.error(f"Error saving history for device {device_id}: {e}")
            return False
        except Exception as e:
            logger.error(f"Unexpected error saving history for device {device_id}: {e}", exc_info=True)
            return False

    async def load(self, device_id: int | str) -> list[dict[str, Any]]:
        """Retained history of a device (empty if none or unreadable)"""
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, self.load_sync, device_id)
        except PersistenceError as e:
            logger.error(f"Error loading history for device {device_id}: {e}")
            return []
        except Exception as e:
            logger.error(f"Unexpected error loading history for device {device_id}: {e}", exc_info=True)
            return []

    def load_sync(self, device_id: int | str) -> list[dict[str, Any]]:
        """
        Read a device's history file.

        Returns:
            List of serialized readings, empty if the file does not exist

        Raises:
            PersistenceError: file unreadable or not a JSON list
        """
        path = self.path_for(device_id)
        if not path.exists():
            return []

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (ValueError, OSError) as e:
            # ValueError covers both JSONDecodeError and UnicodeDecodeError
            raise PersistenceError(str(e), path=str(path))

        if not isinstance(data, list):
            raise PersistenceError("history file is not a JSON list", path=str(path))

        return data

    def append_sync(self, device_id: int | str, reading: Reading) -> list[dict[str, Any]]:
        """
        Load, append, trim and rewrite a device's history.

        A corrupt history file is replaced rather than blocking all further
        writes for the device.

        Returns:
            The history as written
        """
        with self._lock:
            try:
                history = self.load_sync(device_id)
            except PersistenceError as e:
                logger.warning(f"Discarding unreadable history for device {device_id}: {e}")
                history = []

            history.append(reading.to_dict())
            history = self.trim(history, self._reference_time(reading))
            self._write(self.path_for(device_id), history)
            return history

    def trim(
        self,
        history: list[dict[str, Any]],
        reference: datetime,
    ) -> list[dict[str, Any]]:
        """Keep entries newer than reference - retention"""
        cutoff = reference - self.retention
        kept = []
        for entry in history:
            try:
                if parse_timestamp(entry["timestamp"]) > cutoff:
                    kept.append(entry)
            except (KeyError, TypeError, ValueError):
                continue
        return kept

    @staticmethod
    def _reference_time(reading: Reading) -> datetime:
        try:
            return parse_timestamp(reading.timestamp)
        except ValueError:
            return datetime.now(timezone.utc)

    def _write(self, path: Path, history: list[dict[str, Any]]) -> None:
        """Write to a temp file, then rename (atomic on same filesystem)"""
        temp_path = path.with_suffix(".tmp")
        try:
            self.data_dir.mkdir(parents=True, exist_ok=True)
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(history, f, indent=2)
            temp_path.replace(path)
        except (OSError, TypeError, ValueError) as e:
            raise PersistenceError(str(e), path=str(path))
