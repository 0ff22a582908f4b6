"""
Migration Engine
Batch processor that drives a single step: paging, transform, idempotent inserts, checkpoints
"""
import logging
import sys
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple

from pymongo import ASCENDING
from pymongo.errors import ConnectionFailure, DuplicateKeyError, PyMongoError
from tqdm import tqdm

from ..core.exceptions import StepDefinitionError
from ..monitoring.metrics import BatchMetrics
from .checkpoint import (
    STATUS_COMPLETED,
    STATUS_COMPLETED_WITH_ERRORS,
    STATUS_FAILED,
    STATUS_RUNNING,
    Checkpoint,
    CheckpointStore,
    utcnow,
)
from .registry import SourceSpec, StepDescriptor

logger = logging.getLogger(__name__)

MIGRATION_KEY = "migration_key"
MIGRATION_KEY_INDEX = "migration_key_unique"
DEFAULT_BATCH_SIZE = 500


class StepStatus(Enum):
    """Outcome of a step within one run"""
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass
class MigrationOptions:
    """Options shared by every step of a run"""
    batch_size: int = DEFAULT_BATCH_SIZE
    dry_run: bool = False
    resume: bool = False


@dataclass(frozen=True)
class MigrationResult:
    """Run-scoped summary of one step; never persisted"""
    step_name: str
    source_count: int = 0
    inserted_count: int = 0
    skipped_duplicates: int = 0
    filtered_count: int = 0
    errors: int = 0
    duration: float = 0.0
    status: StepStatus = StepStatus.COMPLETED
    error: Optional[str] = None
    dry_run: bool = False

    @property
    def succeeded(self) -> bool:
        return self.status in (StepStatus.COMPLETED, StepStatus.SKIPPED)


@dataclass
class _Counters:
    source_count: int = 0
    inserted_count: int = 0
    skipped_duplicates: int = 0
    filtered_count: int = 0
    errors: int = 0

    def add(self, other: "_Counters"):
        self.source_count += other.source_count
        self.inserted_count += other.inserted_count
        self.skipped_duplicates += other.skipped_duplicates
        self.filtered_count += other.filtered_count
        self.errors += other.errors


@dataclass
class _Progress:
    """Last committed checkpoint of the running step and the counters of this run"""
    checkpoint: Checkpoint
    counters: _Counters = field(default_factory=_Counters)


class BatchProcessor:
    """
    Runs one step to completion:
    - pages each source collection in ascending sort-key order
    - transforms every document and inserts it unless its natural key exists
    - persists a checkpoint after every committed batch (never in dry-run)
    - contains per-document failures; connection failures abort the step
    """

    def __init__(self, database, checkpoint_store: CheckpointStore,
                 metrics: Optional[BatchMetrics] = None,
                 show_progress: bool = True,
                 heartbeat: Optional[Callable[[], Awaitable[Any]]] = None):
        self.database = database
        self.checkpoint_store = checkpoint_store
        self.metrics = metrics or BatchMetrics()
        self.show_progress = show_progress
        self.heartbeat = heartbeat

    async def run(self, step: StepDescriptor, options: MigrationOptions) -> MigrationResult:
        mode = "DRY-RUN" if options.dry_run else "LIVE"
        logger.info(f"=== Starting step: {step.name} ({mode}) ===")
        logger.info(f"Sources: {', '.join(step.source_collections)} → {step.target_collection}, "
                    f"batch size: {options.batch_size}, resume: {options.resume}")

        start_time = time.time()
        progress: Optional[_Progress] = None

        try:
            step.validate()
            if options.batch_size <= 0:
                raise StepDefinitionError(f"Batch size must be > 0, got {options.batch_size}", step.name)

            existing = self.checkpoint_store.get(step.name)
            if options.resume and existing and existing.is_clean:
                logger.info(f"⏭️ Step {step.name} already completed, skipping")
                return MigrationResult(step_name=step.name, status=StepStatus.SKIPPED,
                                       source_count=existing.source_count,
                                       inserted_count=existing.inserted_count,
                                       skipped_duplicates=existing.skipped_duplicates,
                                       filtered_count=existing.filtered_count,
                                       duration=time.time() - start_time, dry_run=options.dry_run)

            if options.resume and existing and existing.is_finished:
                # failed documents lie behind the cursor: rescan from the first source
                progress = _Progress(Checkpoint(step_name=step.name))
                logger.warning(f"⚠️ Step {step.name} finished with {existing.errors:,} errors, "
                               f"rescanning all sources")
            elif options.resume and existing:
                progress = _Progress(replace(existing, status=STATUS_RUNNING, last_error=None,
                                             completed_at=None))
                logger.info(f"🔄 Resuming {step.name} after {existing.cursor}")
            else:
                progress = _Progress(Checkpoint(step_name=step.name))

            target = self.database[step.target_collection]
            if not options.dry_run:
                await target.create_index([(MIGRATION_KEY, ASCENDING)], unique=True, name=MIGRATION_KEY_INDEX)

            start_index, resume_after = self._resume_position(step, progress.checkpoint.cursor)
            total = await self._estimate_total(step)

            with tqdm(total=total, desc=f"🚀 {step.name}", unit="docs", unit_scale=True,
                      disable=not self.show_progress, leave=True, file=sys.stdout) as pbar:
                for index, source in enumerate(step.sources):
                    if index < start_index:
                        continue
                    last_id = resume_after if index == start_index else None
                    await self._run_source(step, source, last_id, progress, target, options, pbar)

            counters = progress.counters
            # cumulative: a resumed step also answers for errors of the runs before it
            if progress.checkpoint.errors == 0:
                status = StepStatus.COMPLETED
            else:
                status = StepStatus.COMPLETED_WITH_ERRORS
            if not options.dry_run:
                stored_status = (STATUS_COMPLETED if status == StepStatus.COMPLETED
                                 else STATUS_COMPLETED_WITH_ERRORS)
                await self.checkpoint_store.save(replace(progress.checkpoint, status=stored_status,
                                                         completed_at=utcnow()))

            result = self._result(step, counters, start_time, status, options)
            logger.info(f"✅ Step {step.name} {status.value} in {result.duration:.2f}s: "
                        f"{counters.inserted_count:,} inserted, {counters.skipped_duplicates:,} duplicates, "
                        f"{counters.errors:,} errors")
            return result

        except Exception as e:
            logger.error(f"❌ Step {step.name} failed: {e}")
            if progress is None:
                return self._result(step, _Counters(), start_time, StepStatus.FAILED, options, error=str(e))
            if not options.dry_run and progress.checkpoint.cursor is not None:
                await self._record_failure(progress.checkpoint, e)
            return self._result(step, progress.counters, start_time, StepStatus.FAILED, options, error=str(e))

    def _resume_position(self, step: StepDescriptor,
                         cursor: Optional[Dict[str, Any]]) -> Tuple[int, Any]:
        """Index of the source to start with and the sort key to resume after"""
        if not cursor:
            return 0, None
        sources = step.source_collections
        if cursor.get("source") not in sources:
            raise StepDefinitionError(
                f"Checkpoint cursor references unknown source {cursor.get('source')!r}; "
                f"reset the step to start over", step.name)
        return sources.index(cursor["source"]), cursor.get("last_id")

    async def _estimate_total(self, step: StepDescriptor) -> Optional[int]:
        total = 0
        for source in step.sources:
            try:
                total += await self.database[source.collection].estimated_document_count()
            except PyMongoError as e:
                logger.debug(f"Could not estimate size of {source.collection}: {e}")
                return None
        return total

    async def _run_source(self, step: StepDescriptor, source: SourceSpec, last_id: Any,
                          progress: _Progress, target, options: MigrationOptions, pbar):
        """Page one source; progress only ever holds batches whose checkpoint was saved"""
        collection = self.database[source.collection]

        while True:
            query = {source.sort_field: {"$gt": last_id}} if last_id is not None else {}
            batch = await (collection.find(query)
                           .sort(source.sort_field, ASCENDING)
                           .limit(options.batch_size)
                           .to_list(length=options.batch_size))
            if not batch:
                break

            timing = self.metrics.start_batch(step.name, source.collection)
            context = None
            if source.context_loader is not None:
                context = await source.context_loader(self.database, batch)

            batch_counters = _Counters()
            for doc in batch:
                await self._process_document(step, source, doc, context, target,
                                             batch_counters, options.dry_run)

            last_id = batch[-1].get(source.sort_field)
            if last_id is None:
                raise StepDefinitionError(
                    f"Documents of {source.collection} lack the sort field '{source.sort_field}'", step.name)

            committed = progress.checkpoint
            candidate = replace(
                committed,
                cursor={"source": source.collection, "last_id": last_id},
                source_count=committed.source_count + batch_counters.source_count,
                inserted_count=committed.inserted_count + batch_counters.inserted_count,
                skipped_duplicates=committed.skipped_duplicates + batch_counters.skipped_duplicates,
                filtered_count=committed.filtered_count + batch_counters.filtered_count,
                errors=committed.errors + batch_counters.errors,
            )
            if not options.dry_run:
                await self.checkpoint_store.save(candidate)
            progress.checkpoint = candidate
            progress.counters.add(batch_counters)
            if not options.dry_run and self.heartbeat is not None:
                await self.heartbeat()

            self.metrics.end_batch(timing, len(batch))
            pbar.update(len(batch))
            pbar.set_postfix_str(f"dup: {progress.counters.skipped_duplicates} | "
                                 f"errors: {progress.counters.errors}")

            if len(batch) < options.batch_size:
                break

    async def _process_document(self, step: StepDescriptor, source: SourceSpec, doc: Dict[str, Any],
                                context: Any, target, counters: _Counters, dry_run: bool):
        counters.source_count += 1
        try:
            if source.context_loader is not None:
                record = source.transform(doc, context)
            else:
                record = source.transform(doc)
            if record is None:
                counters.filtered_count += 1
                return

            key = source.natural_key(doc)
            record = dict(record)
            record[MIGRATION_KEY] = key

            if await target.find_one({MIGRATION_KEY: key}, {"_id": 1}) is not None:
                counters.skipped_duplicates += 1
                return

            if dry_run:
                counters.inserted_count += 1
                return

            try:
                await target.insert_one(record)
            except DuplicateKeyError as e:
                key_pattern = (e.details or {}).get("keyPattern") or {}
                if MIGRATION_KEY not in key_pattern:
                    raise
                counters.skipped_duplicates += 1
                return
            counters.inserted_count += 1

        except ConnectionFailure:
            raise
        except Exception as e:
            counters.errors += 1
            logger.error(f"❌ [{step.name}] failed to migrate {source.collection} document "
                         f"{doc.get('_id')}: {e}")

    async def _record_failure(self, committed: Checkpoint, error: Exception):
        """Mark the checkpoint failed without moving its cursor"""
        try:
            await self.checkpoint_store.save(replace(committed, status=STATUS_FAILED,
                                                     last_error=str(error)))
        except Exception as e:
            logger.warning(f"⚠️ Could not record failure of {committed.step_name}: {e}")

    @staticmethod
    def _result(step: StepDescriptor, counters: _Counters, start_time: float,
                status: StepStatus, options: MigrationOptions, error: Optional[str] = None) -> MigrationResult:
        return MigrationResult(
            step_name=step.name,
            source_count=counters.source_count,
            inserted_count=counters.inserted_count,
            skipped_duplicates=counters.skipped_duplicates,
            filtered_count=counters.filtered_count,
            errors=counters.errors,
            duration=time.time() - start_time,
            status=status,
            error=error,
            dry_run=options.dry_run
        )
