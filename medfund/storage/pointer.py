import json
import os
import time
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

from medfund.core.constants import POINTER_FILE_PATH, POINTER_LOCK_STALE_SECONDS, POINTER_LOCK_TIMEOUT_SECONDS
from medfund.core.exceptions import Conflict, MalformedDocument
from medfund.core.logger import logger
from medfund.storage.schemas import PointerRecord

DEFAULT_DESCRIPTION = "This file tracks the latest IPFS database CID for the MedFund application"


class PointerFile:
    """
    Local JSON file naming the current database snapshot.

    Snapshots are immutable, so this file is the only mutable piece of state a
    fresh reader needs. Writers take an exclusive ``<name>.lock`` file so that
    ``compare_and_swap`` is atomic across processes sharing the path.
    """

    def __init__(
        self,
        path: Union[str, Path] = POINTER_FILE_PATH,
        lock_timeout: float = POINTER_LOCK_TIMEOUT_SECONDS,
        lock_stale_after: float = POINTER_LOCK_STALE_SECONDS,
    ):
        self.path = Path(path)
        self.lock_path = self.path.with_name(f"{self.path.name}.lock")
        self.lock_timeout = lock_timeout
        self.lock_stale_after = lock_stale_after

    def read(self) -> PointerRecord:
        raw = self.path.read_text(encoding="utf-8")
        try:
            return PointerRecord.model_validate_json(raw)
        except ValueError as e:
            raise MalformedDocument(f"Pointer file {self.path} is invalid: {e}") from e

    def current_cid(self) -> Optional[str]:
        try:
            return self.read().databaseCID
        except FileNotFoundError:
            return None

    def _lock_is_stale(self) -> bool:
        """A lock is stale when its owner process is gone or it outlived ``lock_stale_after``."""
        try:
            age = time.time() - self.lock_path.stat().st_mtime
            owner = self.lock_path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return False
        if age > self.lock_stale_after:
            return True
        if not owner.isdigit():
            return False
        try:
            os.kill(int(owner), 0)
        except ProcessLookupError:
            return True
        except OSError:
            return False
        return False

    @contextmanager
    def _locked(self):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        deadline = time.monotonic() + self.lock_timeout
        while True:
            try:
                fd = os.open(self.lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY)
                break
            except FileExistsError:
                if self._lock_is_stale():
                    logger.warning("pointer.stale_lock_removed", path=str(self.lock_path))
                    self.lock_path.unlink(missing_ok=True)
                    continue
                if time.monotonic() >= deadline:
                    raise TimeoutError(f"Timed out waiting for pointer lock {self.lock_path}")
                time.sleep(0.05)
        try:
            os.write(fd, str(os.getpid()).encode("ascii"))
            yield
        finally:
            os.close(fd)
            os.unlink(self.lock_path)

    def _replace(self, cid: str, description: Optional[str]) -> PointerRecord:
        record = PointerRecord(
            databaseCID=cid,
            updatedAt=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            description=description or DEFAULT_DESCRIPTION,
        )
        tmp_path = self.path.with_name(f".{self.path.name}.{os.getpid()}.tmp")
        tmp_path.write_text(json.dumps(record.model_dump(exclude_none=True), indent=2) + "\n", encoding="utf-8")
        os.replace(tmp_path, self.path)
        logger.info("pointer.written", path=str(self.path), cid=cid)
        return record

    def write(self, cid: str, description: Optional[str] = None) -> PointerRecord:
        """Overwrite the pointer unconditionally (last writer wins)."""
        with self._locked():
            return self._replace(cid, description)

    def compare_and_swap(
        self,
        expected_cid: Optional[str],
        new_cid: str,
        description: Optional[str] = None,
    ) -> PointerRecord:
        """
        Point at ``new_cid`` only if the file still names ``expected_cid``.

        ``expected_cid=None`` requires that no pointer exists yet.

        Raises:
            Conflict: the pointer names a different CID; reload and retry.
        """
        with self._locked():
            actual = self.current_cid()
            if actual != expected_cid:
                logger.warning("pointer.conflict", expected=expected_cid, actual=actual)
                raise Conflict(expected_cid, actual)
            return self._replace(new_cid, description)


def get_pointer_file() -> PointerFile:
    return PointerFile()
