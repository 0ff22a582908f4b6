"""
Advisory Run Lock
Prevents two migration runners from working on the same database at the same time
"""
import logging
import os
import socket
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from pymongo.errors import DuplicateKeyError

from ..core.exceptions import MigrationLockError

logger = logging.getLogger(__name__)

LOCK_ID = "migration-runner"


class MigrationLock:
    """
    A single lock document with a fixed _id.

    Acquisition relies on the atomicity of insert_one on _id; an expired lock
    (its holder died without releasing it) is taken over with a conditional
    replace. The holder extends the expiry with refresh() after every batch.
    """

    def __init__(self, database, collection_name: str = "_migration_lock",
                 ttl_seconds: int = 3600, owner_id: Optional[str] = None):
        self.collection = database[collection_name]
        self.ttl = timedelta(seconds=ttl_seconds)
        self.owner_id = owner_id or uuid.uuid4().hex
        self.is_held = False

    def _lock_document(self, now: datetime) -> Dict[str, Any]:
        return {
            "_id": LOCK_ID,
            "owner": self.owner_id,
            "host": socket.gethostname(),
            "pid": os.getpid(),
            "acquired_at": now,
            "expires_at": now + self.ttl,
        }

    async def acquire(self):
        now = datetime.now(timezone.utc)
        try:
            await self.collection.insert_one(self._lock_document(now))
        except DuplicateKeyError:
            result = await self.collection.replace_one(
                {"_id": LOCK_ID, "expires_at": {"$lt": now}},
                self._lock_document(now)
            )
            if result.modified_count == 0:
                holder = await self.collection.find_one({"_id": LOCK_ID}) or {}
                holder.pop("_id", None)
                raise MigrationLockError(
                    f"Another migration is running (host {holder.get('host')}, pid {holder.get('pid')}, "
                    f"until {holder.get('expires_at')})", holder)
            logger.warning("⚠️ Took over an expired migration lock")

        self.is_held = True
        logger.info(f"🔒 Migration lock acquired ({self.owner_id})")

    async def refresh(self):
        """Extend the expiry; raises MigrationLockError if the lock was lost"""
        if not self.is_held:
            return
        now = datetime.now(timezone.utc)
        result = await self.collection.update_one(
            {"_id": LOCK_ID, "owner": self.owner_id},
            {"$set": {"expires_at": now + self.ttl}}
        )
        if result.matched_count == 0:
            self.is_held = False
            raise MigrationLockError("Migration lock was lost to another runner")

    async def release(self):
        """Release the lock if we hold it; safe to call repeatedly"""
        if not self.is_held:
            return
        try:
            await self.collection.delete_one({"_id": LOCK_ID, "owner": self.owner_id})
            logger.info("🔓 Migration lock released")
        except Exception as e:
            logger.warning(f"⚠️ Could not release migration lock: {e}")
        finally:
            self.is_held = False

    async def __aenter__(self) -> "MigrationLock":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.release()
        return False
