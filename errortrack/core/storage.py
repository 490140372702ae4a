# ============================================================================
# errortrack -- Durable Queue Mirror (errortrack/core/storage.py)
# ============================================================================
#
# WHAT THIS FILE DOES:
#   Keeps a copy of the pending queue in a single durable slot so that
#   events waiting for a retry survive a process restart.
#
#   StoragePort    -- the three-call interface the tracker depends on
#   MemoryStorage  -- in-process slot (tests, embedded use)
#   FileStorage    -- one JSON file, replaced atomically on every write
#
# FORMAT:
#   UTF-8 JSON list of ErrorEvent.to_dict() records.
#
# FAILURES:
#   FileStorage raises StorageError. Other adapters may raise anything.
#   Persistence is best-effort: the tracker catches every exception from
#   the port, logs it, and keeps the in-memory queue.
# ============================================================================

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import List, Optional, Protocol, Sequence

from errortrack.core.exceptions import StorageError
from errortrack.core.models import ErrorEvent


class StoragePort(Protocol):
    def read(self) -> Optional[bytes]: ...

    def write(self, data: bytes) -> None: ...

    def clear(self) -> None: ...


class MemoryStorage:
    """Single slot held in memory."""

    def __init__(self, data: Optional[bytes] = None):
        self.data = data

    def read(self) -> Optional[bytes]:
        return self.data

    def write(self, data: bytes) -> None:
        self.data = bytes(data)

    def clear(self) -> None:
        self.data = None


class FileStorage:
    """
    Single slot backed by a file.

    Writes go to a temp file in the same directory followed by
    os.replace(), so a crash mid-write leaves the previous copy intact.
    """

    def __init__(self, path):
        self.path = Path(path)

    def read(self) -> Optional[bytes]:
        try:
            return self.path.read_bytes()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise StorageError(str(e), path=str(self.path)) from e

    def write(self, data: bytes) -> None:
        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=self.path.name + ".", suffix=".tmp", dir=str(self.path.parent)
            )
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp_name, self.path)
            tmp_name = None
        except OSError as e:
            raise StorageError(str(e), path=str(self.path)) from e
        finally:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)

    def clear(self) -> None:
        try:
            self.path.unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            raise StorageError(str(e), path=str(self.path)) from e


def storage_from_config(storage_config) -> StoragePort:
    """FileStorage when a path is configured, otherwise MemoryStorage."""
    if storage_config.path:
        return FileStorage(storage_config.path)
    return MemoryStorage()


# -------------------------------------------------------------------
# Queue <-> bytes
# -------------------------------------------------------------------

def encode_queue(events: Sequence[ErrorEvent]) -> bytes:
    return json.dumps([e.to_dict() for e in events], default=str).encode("utf-8")


def decode_queue(data: Optional[bytes]) -> List[ErrorEvent]:
    """
    Parse a stored queue. Empty or missing data is an empty queue;
    anything unreadable raises StorageError.
    """
    if not data:
        return []
    try:
        records = json.loads(data.decode("utf-8"))
        if not isinstance(records, list):
            raise ValueError("stored queue is not a list")
        return [ErrorEvent.from_dict(r) for r in records if isinstance(r, dict)]
    except (ValueError, TypeError, UnicodeDecodeError) as e:
        raise StorageError(f"Stored queue is unreadable: {e}") from e
