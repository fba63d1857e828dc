"""Cross-process lease on a named resource, backed by a lock file with an expiry."""

from __future__ import annotations

import hashlib
import json
import logging
import os
import time
import uuid
from pathlib import Path
from typing import Optional

from .errors import LeaseBusyError

logger = logging.getLogger(__name__)


class Lease:
    """Ownership of ``resource`` until ``expires_at`` or :meth:`release`."""

    def __init__(self, resource: str, lock_path: Path, run_id: str, expires_at: float):
        self.resource = resource
        self.lock_path = lock_path
        self.run_id = run_id
        self.expires_at = expires_at
        self.released = False

    @property
    def expired(self) -> bool:
        return time.time() >= self.expires_at

    def release(self) -> None:
        if self.released:
            return
        self.released = True
        holder = read_lock(self.lock_path)
        if holder is not None and holder.get("run_id") != self.run_id:
            logger.warning("Lease on %s was taken over by %s; leaving its lock", self.resource, holder.get("run_id"))
            return
        try:
            self.lock_path.unlink()
        except FileNotFoundError:
            pass
        logger.debug("Released lease %s on %s", self.run_id, self.resource)

    def __enter__(self) -> "Lease":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()


def lock_path_for(resource: str, lock_dir: Path) -> Path:
    digest = hashlib.sha1(resource.encode("utf-8")).hexdigest()[:16]
    return lock_dir / f".{digest}.lock"


def read_lock(lock_path: Path) -> Optional[dict]:
    try:
        holder = json.loads(lock_path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return None
    except (OSError, ValueError):
        # empty while its creator is still writing it, or corrupt
        return {}
    return holder if isinstance(holder, dict) else {}


def _expiry(holder: dict, lock_path: Path, ttl: float) -> float:
    try:
        return float(holder["expires_at"])
    except (KeyError, TypeError, ValueError):
        pass
    # no readable expiry: the lock lives for one ttl from its last write
    try:
        return lock_path.stat().st_mtime + ttl
    except FileNotFoundError:
        return 0.0


def _create_lock(lock_path: Path, payload: dict) -> bool:
    try:
        fd = os.open(lock_path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
    except FileExistsError:
        return False
    with os.fdopen(fd, "w", encoding="utf-8") as handle:
        json.dump(payload, handle)
    return True


def acquire_lease(resource: str, ttl: float, lock_dir: Path, run_id: Optional[str] = None) -> Lease:
    """Take the lease on ``resource`` or raise :class:`LeaseBusyError` while another run holds it.

    A lock whose expiry has passed is reclaimed. A lock that cannot be read (its owner
    may still be writing it) counts as held until ``ttl`` after its last modification.
    """

    lock_dir.mkdir(parents=True, exist_ok=True)
    lock_path = lock_path_for(resource, lock_dir)
    run_id = run_id or uuid.uuid4().hex
    expires_at = time.time() + ttl
    payload = {"run_id": run_id, "resource": resource, "expires_at": expires_at}

    for _ in range(2):
        if _create_lock(lock_path, payload):
            logger.debug("Acquired lease %s on %s for %.0fs", run_id, resource, ttl)
            return Lease(resource, lock_path, run_id, expires_at)

        holder = read_lock(lock_path)
        if holder is None:
            continue
        if _expiry(holder, lock_path, ttl) > time.time():
            raise LeaseBusyError(
                f"Another run is already producing {resource}",
                diagnostics={"holder": holder.get("run_id"), "expires_at": holder.get("expires_at")},
            )
        logger.warning("Reclaiming stale lease on %s held by %s", resource, holder.get("run_id"))
        try:
            lock_path.unlink()
        except FileNotFoundError:
            pass

    raise LeaseBusyError(f"Could not acquire lease on {resource}", diagnostics={"lock": str(lock_path)})
