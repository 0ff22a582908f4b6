"""
Configuration Management
Configuration for the migration CLI: .env files, optional JSON/YAML file, environment variables
"""
import os
import json
import logging
from dataclasses import dataclass, field, asdict
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

import yaml
from dotenv import load_dotenv

from ..core.database import DatabaseConfig
from ..core.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_ENV_FILES = ('.env_local', '.env', 'config.env')
URI_VARIABLES = ('MONGODB_URI', 'MONGO_URI')
LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')


class Environment(Enum):
    """Environment types"""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


@dataclass
class DatabaseSettings:
    """Connection settings for the migrated database"""
    connection_string: str = ""
    database_name: Optional[str] = None
    max_pool_size: int = 20
    min_pool_size: int = 0
    max_idle_time_ms: int = 300000
    socket_timeout_ms: int = 30000
    connect_timeout_ms: int = 20000
    server_selection_timeout_ms: int = 15000


@dataclass
class MigrationSettings:
    """Engine settings"""
    batch_size: int = 500
    checkpoint_collection: str = "_migrations"
    lock_collection: str = "_migration_lock"
    lock_ttl_seconds: int = 3600
    show_progress: bool = True
    log_file: Optional[str] = "migration.log"


@dataclass
class FrameworkConfig:
    """Main configuration"""
    environment: Environment = Environment.DEVELOPMENT
    log_level: str = "INFO"
    config_file: Optional[str] = None
    database: DatabaseSettings = field(default_factory=DatabaseSettings)
    migration: MigrationSettings = field(default_factory=MigrationSettings)

    def database_config(self) -> DatabaseConfig:
        """Connection configuration for the ConnectionManager"""
        return DatabaseConfig(**asdict(self.database))


class ConfigManager:
    """
    Configuration manager with support for:
    - .env files (python-dotenv)
    - Configuration files (JSON/YAML)
    - Environment variables (highest precedence)
    - Validation
    """

    def __init__(self, config_prefix: str = "MIGRATE",
                 env_files: Sequence[str] = DEFAULT_ENV_FILES):
        self.config_prefix = config_prefix
        self.env_files = env_files
        self.config: Optional[FrameworkConfig] = None
        self._load_environment_variables()

    def _load_environment_variables(self):
        """Load environment variables from the first .env file found"""
        for env_file in self.env_files:
            if Path(env_file).exists():
                load_dotenv(env_file)
                logger.info(f"Loaded environment variables from {env_file}")
                break

    def load_config(self, config_file: Optional[str] = None) -> FrameworkConfig:
        """Load configuration from file and environment variables"""
        config_data: Dict[str, Any] = {}

        if config_file:
            if not Path(config_file).exists():
                raise ConfigurationError(f"Configuration file not found: {config_file}")
            config_data = self._load_config_file(config_file)

        self._merge(config_data, self._load_from_environment())

        self.config = self._create_config_object(config_data)
        self.config.config_file = config_file
        self._validate_config(self.config)

        logger.debug(f"Configuration loaded for {self.config.environment.value} environment")
        return self.config

    def _load_config_file(self, config_file: str) -> Dict[str, Any]:
        """Load configuration from JSON, YAML, or dotenv file"""
        file_path = Path(config_file)

        if (file_path.suffix.lower() == '.env' or
                file_path.name.startswith('.env') or
                file_path.name.endswith('.env')):
            # dotenv files only feed the environment
            load_dotenv(config_file, override=True)
            return {}

        with open(file_path, 'r') as f:
            try:
                if file_path.suffix.lower() == '.json':
                    data = json.load(f)
                elif file_path.suffix.lower() in ['.yml', '.yaml']:
                    data = yaml.safe_load(f)
                else:
                    raise ConfigurationError(
                        f"Unsupported configuration file format: {file_path.suffix}")
            except (json.JSONDecodeError, yaml.YAMLError) as e:
                raise ConfigurationError(f"Cannot parse {config_file}: {e}") from e

        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"{config_file} must contain a mapping at the top level")
        return data

    def _env(self, name: str) -> Optional[str]:
        value = os.getenv(f"{self.config_prefix}_{name}")
        return value if value not in (None, "") else None

    def _env_int(self, name: str) -> Optional[int]:
        value = self._env(name)
        if value is None:
            return None
        try:
            return int(value)
        except ValueError:
            raise ConfigurationError(f"{self.config_prefix}_{name} must be an integer, got '{value}'")

    def _env_bool(self, name: str) -> Optional[bool]:
        value = self._env(name)
        if value is None:
            return None
        return value.lower() in ("1", "true", "yes", "on")

    def _load_from_environment(self) -> Dict[str, Any]:
        """Load configuration from environment variables; unset variables are omitted"""
        uri = next((os.getenv(name) for name in URI_VARIABLES if os.getenv(name)), None)

        database = {
            "connection_string": uri,
            "database_name": self._env("DB_NAME"),
            "max_pool_size": self._env_int("MAX_POOL_SIZE"),
            "socket_timeout_ms": self._env_int("SOCKET_TIMEOUT_MS"),
            "connect_timeout_ms": self._env_int("CONNECT_TIMEOUT_MS"),
            "server_selection_timeout_ms": self._env_int("SERVER_SELECTION_TIMEOUT_MS"),
        }

        migration = {
            "batch_size": self._env_int("BATCH_SIZE"),
            "checkpoint_collection": self._env("CHECKPOINT_COLLECTION"),
            "lock_collection": self._env("LOCK_COLLECTION"),
            "lock_ttl_seconds": self._env_int("LOCK_TTL_SECONDS"),
            "show_progress": self._env_bool("SHOW_PROGRESS"),
            "log_file": self._env("LOG_FILE"),
        }

        config = {
            "environment": self._env("ENVIRONMENT"),
            "log_level": self._env("LOG_LEVEL"),
            "database": {k: v for k, v in database.items() if v is not None},
            "migration": {k: v for k, v in migration.items() if v is not None},
        }
        return {k: v for k, v in config.items() if v is not None}

    @staticmethod
    def _merge(base: Dict[str, Any], overrides: Dict[str, Any]):
        for key, value in overrides.items():
            if isinstance(value, dict) and isinstance(base.get(key), dict):
                base[key].update(value)
            else:
                base[key] = value

    def _create_config_object(self, config_data: Dict[str, Any]) -> FrameworkConfig:
        """Create FrameworkConfig object from dictionary"""
        try:
            environment = Environment(config_data.get("environment", "development"))
        except ValueError:
            raise ConfigurationError(f"Unknown environment: {config_data.get('environment')}")

        try:
            return FrameworkConfig(
                environment=environment,
                log_level=str(config_data.get("log_level", "INFO")).upper(),
                database=DatabaseSettings(**config_data.get("database", {})),
                migration=MigrationSettings(**config_data.get("migration", {}))
            )
        except TypeError as e:
            raise ConfigurationError(f"Invalid configuration key: {e}") from e

    def _validate_config(self, config: FrameworkConfig):
        """Validate configuration"""
        errors = []

        uri = config.database.connection_string
        if not uri:
            errors.append("MONGODB_URI environment variable is required")
        elif not uri.startswith(("mongodb://", "mongodb+srv://")):
            errors.append("MONGODB_URI must start with mongodb:// or mongodb+srv://")

        if config.migration.batch_size <= 0:
            errors.append("Batch size must be > 0")

        if config.migration.lock_ttl_seconds <= 0:
            errors.append("Lock TTL must be > 0")

        if config.log_level not in LOG_LEVELS:
            errors.append(f"Log level must be one of {', '.join(LOG_LEVELS)}")

        if errors:
            raise ConfigurationError(f"Configuration validation failed: {'; '.join(errors)}",
                                     {"errors": errors})

    def get_config(self) -> FrameworkConfig:
        """Get current configuration"""
        if self.config is None:
            raise RuntimeError("Configuration not loaded. Call load_config() first.")
        return self.config

    def save_config(self, config: FrameworkConfig, file_path: str):
        """Save configuration to file (connection string excluded)"""
        database = asdict(config.database)
        database.pop("connection_string", None)
        config_dict = {
            "environment": config.environment.value,
            "log_level": config.log_level,
            "database": database,
            "migration": asdict(config.migration)
        }

        file_path_obj = Path(file_path)
        with open(file_path_obj, 'w') as f:
            if file_path_obj.suffix.lower() == '.json':
                json.dump(config_dict, f, indent=2)
            elif file_path_obj.suffix.lower() in ['.yml', '.yaml']:
                yaml.dump(config_dict, f, default_flow_style=False)
            else:
                raise ConfigurationError(f"Unsupported file format: {file_path_obj.suffix}")
