"""
Migration Runner
Sequences steps in declared order, halts on step failures and performs opt-in legacy cleanup
"""
import logging
from typing import Iterable, List, Optional, Sequence

from pymongo.errors import PyMongoError

from ..core.exceptions import StepDefinitionError
from .checkpoint import CheckpointStore
from .engine import BatchProcessor, MigrationOptions, MigrationResult, StepStatus
from .registry import StepRegistry

logger = logging.getLogger(__name__)


class MigrationRunner:
    """
    Orchestrates a migration run:
    - loads checkpoints
    - runs the requested steps one at a time, in registry order
    - stops at the first failed step unless running dry
    - drops legacy collections only after a fully successful live run
    """

    def __init__(self, database, registry: StepRegistry, checkpoint_store: CheckpointStore,
                 processor: Optional[BatchProcessor] = None):
        self.database = database
        self.registry = registry
        self.checkpoint_store = checkpoint_store
        self.processor = processor or BatchProcessor(database, checkpoint_store)

    def resolve(self, step_names: Optional[Sequence[str]] = None) -> List[str]:
        """Requested step names, defaulting to the whole registry"""
        return list(step_names) if step_names else self.registry.names()

    async def run(self, step_names: Optional[Sequence[str]] = None,
                  options: Optional[MigrationOptions] = None) -> List[MigrationResult]:
        options = options or MigrationOptions()
        names = self.resolve(step_names)
        await self.checkpoint_store.load()

        results: List[MigrationResult] = []
        for name in names:
            try:
                step = self.registry.get(name)
            except StepDefinitionError as e:
                logger.error(f"❌ {e.message}")
                result = MigrationResult(step_name=name, status=StepStatus.FAILED,
                                         error=e.message, dry_run=options.dry_run)
            else:
                result = await self.processor.run(step, options)
            results.append(result)

            if result.status == StepStatus.FAILED:
                if options.dry_run:
                    logger.warning(f"⚠️ Step {name} failed, continuing because this is a dry run")
                else:
                    logger.error(f"❌ Step {name} failed, stopping migration")
                    break

        return results

    async def reset_checkpoints(self, step_names: Optional[Sequence[str]] = None) -> List[str]:
        """Delete the checkpoints of the given steps; returns the names actually reset"""
        reset = []
        for name in self.resolve(step_names):
            if await self.checkpoint_store.reset(name):
                reset.append(name)
        return reset

    def can_cleanup(self, results: Sequence[MigrationResult], options: MigrationOptions,
                    step_names: Optional[Sequence[str]] = None) -> bool:
        """True only after a live run in which every requested step succeeded without errors"""
        if options.dry_run or not results:
            return False
        if [r.step_name for r in results] != self.resolve(step_names):
            return False
        for result in results:
            checkpoint = self.checkpoint_store.get(result.step_name)
            if checkpoint is not None and checkpoint.errors > 0:
                logger.warning(f"⚠️ Step {result.step_name} has {checkpoint.errors:,} unmigrated "
                               f"document(s) on record")
                return False
        return all(r.succeeded and r.errors == 0 for r in results)

    def legacy_collections(self, step_names: Iterable[str]) -> List[str]:
        """Legacy collections of the given steps, never including any step's target"""
        targets = {step.target_collection for step in self.registry}
        collections: List[str] = []
        for name in step_names:
            for collection in self.registry.get(name).legacy_collections:
                if collection not in targets and collection not in collections:
                    collections.append(collection)
        return collections

    async def drop_legacy_collections(self, results: Sequence[MigrationResult]) -> List[str]:
        """Drop the legacy collections of the steps that ran; failures are logged and skipped"""
        dropped = []
        for collection in self.legacy_collections(r.step_name for r in results):
            try:
                await self.database.drop_collection(collection)
            except PyMongoError as e:
                logger.warning(f"⚠️ Failed to drop {collection}: {e}")
                continue
            dropped.append(collection)
            logger.info(f"🗑️ Dropped collection: {collection}")
        return dropped
