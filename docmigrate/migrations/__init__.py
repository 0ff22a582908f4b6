"""
Migration Framework
"""
from .checkpoint import Checkpoint, CheckpointStore
from .engine import (
    BatchProcessor,
    MigrationOptions,
    MigrationResult,
    StepStatus
)
from .registry import SourceSpec, StepDescriptor, StepRegistry
from .runner import MigrationRunner
from .steps import build_default_registry
