"""
Checkpoint Store
Durable per-step progress records kept in a dedicated collection
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pymongo.errors import PyMongoError

logger = logging.getLogger(__name__)

STATUS_RUNNING = "running"
STATUS_COMPLETED = "completed"
STATUS_COMPLETED_WITH_ERRORS = "completed_with_errors"
STATUS_FAILED = "failed"

_COUNTERS = ("source_count", "inserted_count", "skipped_duplicates", "filtered_count", "errors")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Checkpoint:
    """Last committed batch boundary of a step plus cumulative counters"""
    step_name: str
    cursor: Optional[Dict[str, Any]] = None
    source_count: int = 0
    inserted_count: int = 0
    skipped_duplicates: int = 0
    filtered_count: int = 0
    errors: int = 0
    status: str = STATUS_RUNNING
    last_error: Optional[str] = None
    started_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @property
    def is_completed(self) -> bool:
        return self.status == STATUS_COMPLETED

    @property
    def is_clean(self) -> bool:
        """Completed with every scanned document migrated"""
        return self.is_completed and self.errors == 0

    @property
    def is_finished(self) -> bool:
        return self.status in (STATUS_COMPLETED, STATUS_COMPLETED_WITH_ERRORS)

    def to_document(self) -> Dict[str, Any]:
        return {
            "_id": self.step_name,
            "cursor": self.cursor,
            "source_count": self.source_count,
            "inserted_count": self.inserted_count,
            "skipped_duplicates": self.skipped_duplicates,
            "filtered_count": self.filtered_count,
            "errors": self.errors,
            "status": self.status,
            "last_error": self.last_error,
            "started_at": self.started_at,
            "updated_at": self.updated_at,
            "completed_at": self.completed_at,
        }

    @classmethod
    def from_document(cls, doc: Dict[str, Any]) -> "Checkpoint":
        """Build a checkpoint from its stored form; raises ValueError when malformed"""
        step_name = doc.get("_id")
        if not isinstance(step_name, str) or not step_name:
            raise ValueError(f"checkpoint without a step name: {step_name!r}")

        cursor = doc.get("cursor")
        if cursor is not None and (not isinstance(cursor, dict) or "source" not in cursor):
            raise ValueError(f"malformed cursor {cursor!r}")

        counters = {}
        for name in _COUNTERS:
            value = doc.get(name, 0)
            if not isinstance(value, int) or value < 0:
                raise ValueError(f"invalid counter {name}={value!r}")
            counters[name] = value

        return cls(
            step_name=step_name,
            cursor=cursor,
            status=doc.get("status", STATUS_RUNNING),
            last_error=doc.get("last_error"),
            started_at=doc.get("started_at") or utcnow(),
            updated_at=doc.get("updated_at") or utcnow(),
            completed_at=doc.get("completed_at"),
            **counters
        )


class CheckpointStore:
    """
    Persists one checkpoint per step name.

    Writes are acknowledged upserts, so a batch is only reported as committed
    once its checkpoint is durable.
    """

    def __init__(self, database, collection_name: str = "_migrations"):
        self.collection = database[collection_name]
        self.checkpoints: Dict[str, Checkpoint] = {}

    async def load(self) -> Dict[str, Checkpoint]:
        """Load all checkpoints; missing or unreadable checkpoints mean 'never attempted'"""
        self.checkpoints.clear()
        try:
            documents = await self.collection.find({}).to_list(length=None)
        except PyMongoError as e:
            logger.error(f"❌ Could not read checkpoints, starting without them: {e}")
            return dict(self.checkpoints)

        for doc in documents:
            try:
                checkpoint = Checkpoint.from_document(doc)
            except ValueError as e:
                logger.warning(f"⚠️ Ignoring corrupted checkpoint {doc.get('_id')!r}: {e}")
                continue
            self.checkpoints[checkpoint.step_name] = checkpoint

        logger.info(f"📊 Loaded {len(self.checkpoints)} checkpoint(s)")
        return dict(self.checkpoints)

    def get(self, step_name: str) -> Optional[Checkpoint]:
        return self.checkpoints.get(step_name)

    async def save(self, checkpoint: Checkpoint):
        """Upsert the checkpoint of a step (last write wins)"""
        checkpoint.updated_at = utcnow()
        await self.collection.replace_one(
            {"_id": checkpoint.step_name},
            checkpoint.to_document(),
            upsert=True
        )
        self.checkpoints[checkpoint.step_name] = checkpoint
        logger.debug(f"💾 Checkpoint saved for {checkpoint.step_name}: {checkpoint.cursor}")

    async def reset(self, step_name: str) -> bool:
        """Delete the checkpoint of a step so the next run starts from scratch"""
        result = await self.collection.delete_one({"_id": step_name})
        self.checkpoints.pop(step_name, None)
        deleted = result.deleted_count > 0
        if deleted:
            logger.info(f"🔄 Checkpoint reset for step {step_name}")
        return deleted
