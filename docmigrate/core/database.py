"""
Core Database Connection Management
Scoped connection handle for the migration engine, with bounded timeouts and error mapping
"""
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Optional

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import ConfigurationError as PyMongoConfigurationError
from pymongo.errors import PyMongoError

from .exceptions import DatabaseConnectionError

logger = logging.getLogger(__name__)

_CREDENTIALS = re.compile(r"//[^@/]+@")


def redact_uri(uri: str) -> str:
    """Hide credentials of a MongoDB URI for logs and error messages"""
    return _CREDENTIALS.sub("//***:***@", uri or "")


@dataclass
class DatabaseConfig:
    """Database connection configuration"""
    connection_string: str
    database_name: Optional[str] = None
    max_pool_size: int = 20
    min_pool_size: int = 0
    max_idle_time_ms: int = 300000
    socket_timeout_ms: int = 30000
    connect_timeout_ms: int = 20000
    server_selection_timeout_ms: int = 15000
    app_name: str = "docmigrate"


class ConnectionHandle:
    """An open connection: the client plus the migrated database"""

    def __init__(self, client: Any, database: Any):
        self.client = client
        self.database = database
        self.is_open = True

    @property
    def database_name(self) -> str:
        return self.database.name

    def collection(self, name: str):
        return self.database[name]


class ConnectionManager:
    """
    Owns the lifetime of the database connection.

    Constructed explicitly and passed around; use it as an async context manager
    so the connection is released on every exit path:

        async with ConnectionManager(config) as handle:
            ...
    """

    def __init__(self, config: DatabaseConfig,
                 client_factory: Callable[..., Any] = AsyncIOMotorClient):
        self.config = config
        self.client_factory = client_factory
        self.handle: Optional[ConnectionHandle] = None

    async def connect(self) -> ConnectionHandle:
        """Connect and verify the server answers; raises DatabaseConnectionError"""
        if self.handle and self.handle.is_open:
            return self.handle

        safe_uri = redact_uri(self.config.connection_string)
        logger.info(f"Connecting to {safe_uri}...")

        try:
            client = self.client_factory(
                self.config.connection_string,
                maxPoolSize=self.config.max_pool_size,
                minPoolSize=self.config.min_pool_size,
                maxIdleTimeMS=self.config.max_idle_time_ms,
                socketTimeoutMS=self.config.socket_timeout_ms,
                connectTimeoutMS=self.config.connect_timeout_ms,
                serverSelectionTimeoutMS=self.config.server_selection_timeout_ms,
                appname=self.config.app_name
            )
        except (PyMongoError, ValueError, TypeError) as e:
            raise DatabaseConnectionError(f"Invalid connection string: {e}", safe_uri) from e

        try:
            database = client.get_default_database(default=self.config.database_name)
        except PyMongoConfigurationError as e:
            client.close()
            raise DatabaseConnectionError(
                "No database name in the connection string and none configured", safe_uri
            ) from e

        try:
            await client.admin.command("ping")
        except PyMongoError as e:
            client.close()
            logger.error(f"❌ Failed to connect to {safe_uri}: {e}")
            raise DatabaseConnectionError(f"Cannot reach the database: {e}", safe_uri) from e

        self.handle = ConnectionHandle(client, database)
        logger.info(f"✅ Connected to database '{database.name}'")
        return self.handle

    async def disconnect(self):
        """Close the connection; safe to call repeatedly"""
        if not self.handle or not self.handle.is_open:
            return
        try:
            self.handle.client.close()
        except Exception as e:
            logger.warning(f"Error while closing the connection: {e}")
        finally:
            self.handle.is_open = False
        logger.info("Disconnected from the database")

    async def __aenter__(self) -> ConnectionHandle:
        return await self.connect()

    async def __aexit__(self, exc_type, exc, tb):
        await self.disconnect()
        return False
