"""
docmigrate
Resumable, checkpointed migration of legacy document collections into a new schema
"""

__version__ = "1.0.0"

# Core components
from .core.database import (
    ConnectionHandle,
    ConnectionManager,
    DatabaseConfig
)
from .core.exceptions import (
    ConfigurationError,
    DatabaseConnectionError,
    MigrationError,
    MigrationLockError,
    StepDefinitionError
)

# Configuration management
from .config.manager import (
    ConfigManager,
    DatabaseSettings,
    Environment,
    FrameworkConfig,
    MigrationSettings
)

# Migration
from .migrations.checkpoint import Checkpoint, CheckpointStore
from .migrations.engine import (
    BatchProcessor,
    MigrationOptions,
    MigrationResult,
    StepStatus
)
from .migrations.lock import MigrationLock
from .migrations.registry import SourceSpec, StepDescriptor, StepRegistry, source_key
from .migrations.runner import MigrationRunner
from .migrations.steps import build_default_registry

# Monitoring
from .monitoring.metrics import BatchMetrics
from .monitoring.report import MigrationReporter

__all__ = [
    # Core
    "ConnectionHandle",
    "ConnectionManager",
    "DatabaseConfig",
    "ConfigurationError",
    "DatabaseConnectionError",
    "MigrationError",
    "MigrationLockError",
    "StepDefinitionError",

    # Configuration
    "ConfigManager",
    "DatabaseSettings",
    "Environment",
    "FrameworkConfig",
    "MigrationSettings",

    # Migration
    "Checkpoint",
    "CheckpointStore",
    "BatchProcessor",
    "MigrationOptions",
    "MigrationResult",
    "StepStatus",
    "MigrationLock",
    "SourceSpec",
    "StepDescriptor",
    "StepRegistry",
    "source_key",
    "MigrationRunner",
    "build_default_registry",

    # Monitoring
    "BatchMetrics",
    "MigrationReporter"
]
