"""MongoDB connection lifecycle for sensor-ingest: retry on startup, state tracking, graceful close."""
import logging
import asyncio
import time
import threading
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

from pymongo import ASCENDING, DESCENDING, IndexModel, monitoring
from pymongo.errors import PyMongoError
from motor.motor_asyncio import AsyncIOMotorClient

from config import Settings, settings as default_settings
from errors import StartupConnectionError, StorageUnavailableError

logger = logging.getLogger("sensor-ingest.db")


class ConnectionStatus(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class _HeartbeatListener(monitoring.ServerHeartbeatListener):
    """Flags the database as disconnected when the driver loses the server."""

    def __init__(self, database: "Database"):
        self._database = database

    def started(self, event):
        pass

    def succeeded(self, event):
        self._database._on_heartbeat_succeeded(event.connection_id)

    def failed(self, event):
        self._database._on_connection_lost(f"heartbeat to {event.connection_id} failed: {event.reply}")


class _PoolListener(monitoring.ConnectionPoolListener):
    """Treats a cleared pool (network error on an operation) as a lost connection."""

    def __init__(self, database: "Database"):
        self._database = database

    def pool_created(self, event):
        pass

    def pool_ready(self, event):
        pass

    def pool_cleared(self, event):
        self._database._on_connection_lost(f"connection pool for {event.address} cleared")

    def pool_closed(self, event):
        pass

    def connection_created(self, event):
        pass

    def connection_ready(self, event):
        pass

    def connection_closed(self, event):
        pass

    def connection_check_out_started(self, event):
        pass

    def connection_check_out_failed(self, event):
        pass

    def connection_checked_out(self, event):
        pass

    def connection_checked_in(self, event):
        pass


class Database:
    """Owns the MongoDB client and its connection state.

    ``connect`` retries with capped exponential backoff and raises
    ``StartupConnectionError`` once the retry budget is spent. After that the
    state only changes through driver monitoring events or ``disconnect``;
    reconnection is left to the caller.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client_factory: Callable[..., Any] = AsyncIOMotorClient,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self._settings = settings or default_settings
        self._client_factory = client_factory
        self._sleep = sleep
        self._client = None
        self._status = ConnectionStatus.DISCONNECTED
        # Monitoring listeners write the status from pymongo monitor threads.
        self._status_lock = threading.Lock()
        self._connect_lock = asyncio.Lock()
        self._connection_attempts = 0
        self._connected_at: Optional[datetime] = None

    @property
    def status(self) -> ConnectionStatus:
        return self._status

    @property
    def is_connected(self) -> bool:
        """Check if database is connected."""
        return self._client is not None and self._status is ConnectionStatus.CONNECTED

    @property
    def connection_attempts(self) -> int:
        return self._connection_attempts

    @property
    def client(self):
        return self._client

    @property
    def records(self):
        """The sensor records collection."""
        if self._client is None:
            raise StorageUnavailableError("Database connection is closed")
        return self._client[self._settings.DB_NAME][self._settings.RECORDS_COLLECTION]

    def require_connection(self) -> None:
        if not self.is_connected:
            raise StorageUnavailableError("Database is not connected")

    def backoff_delay(self, attempt: int) -> float:
        """Delay in seconds after failed attempt number ``attempt`` (1-based)."""
        return min(
            self._settings.DB_RETRY_BASE_DELAY * (2 ** attempt),
            self._settings.DB_RETRY_MAX_DELAY,
        )

    def _client_options(self) -> Dict[str, Any]:
        return {
            "maxPoolSize": self._settings.DB_MAX_POOL_SIZE,
            "minPoolSize": self._settings.DB_MIN_POOL_SIZE,
            "serverSelectionTimeoutMS": self._settings.DB_SERVER_SELECTION_TIMEOUT_MS,
            "connectTimeoutMS": self._settings.DB_CONNECT_TIMEOUT_MS,
            "socketTimeoutMS": self._settings.DB_SOCKET_TIMEOUT_MS,
            "retryWrites": True,
            "event_listeners": [_HeartbeatListener(self), _PoolListener(self)],
        }

    async def connect(self) -> None:
        """Connect to MongoDB, retrying with capped exponential backoff."""
        async with self._connect_lock:
            if self.is_connected:
                logger.info("Using existing MongoDB connection")
                return

            if self._client is not None:
                # Lost connection: drop the stale client before opening a new one.
                self._client.close()
                self._client = None

            max_retries = self._settings.DB_MAX_RETRIES
            self._status = ConnectionStatus.CONNECTING

            for attempt in range(1, max_retries + 1):
                self._connection_attempts += 1
                logger.info(f"Attempting to connect to MongoDB (attempt {attempt}/{max_retries})...")

                client = None
                try:
                    client = self._client_factory(self._settings.MONGO_URI, **self._client_options())
                    await client.admin.command("ping")
                except (PyMongoError, OSError, asyncio.TimeoutError) as e:
                    logger.error(f"MongoDB connection attempt {attempt} failed: {e}")
                    if client is not None:
                        client.close()

                    if attempt >= max_retries:
                        self._status = ConnectionStatus.DISCONNECTED
                        logger.error(f"Failed to connect to MongoDB after {attempt} attempts")
                        raise StartupConnectionError(
                            f"Could not connect to MongoDB after {attempt} attempts", attempt, e
                        ) from e

                    delay = self.backoff_delay(attempt)
                    logger.info(f"Retrying in {delay:.1f}s...")
                    await self._sleep(delay)
                    continue

                with self._status_lock:
                    self._client = client
                    self._status = ConnectionStatus.CONNECTED
                self._connected_at = datetime.now(timezone.utc)
                logger.info("MongoDB connected successfully")
                await self._create_indexes()
                return

    async def _create_indexes(self):
        """Create the indexes the list, filter and uniqueness rules rely on."""
        try:
            await self.records.create_indexes([
                IndexModel([("recordId", ASCENDING)], unique=True, name="recordId_unique"),
                IndexModel([("timestamp", DESCENDING)], name="timestamp_desc"),
                IndexModel([("status", ASCENDING), ("timestamp", DESCENDING)], name="status_timestamp_desc"),
            ])
            logger.info("Database indexes created successfully")
        except PyMongoError as e:
            logger.error(f"Error creating database indexes: {e}")
            await self.disconnect()
            raise StartupConnectionError(
                f"Could not create indexes: {e}", self._connection_attempts, e
            ) from e

    async def disconnect(self) -> None:
        """Close the client. Calling it while already disconnected does nothing."""
        if self._client is None:
            return

        with self._status_lock:
            client, self._client = self._client, None
            self._status = ConnectionStatus.DISCONNECTED
        self._connected_at = None
        try:
            client.close()
            logger.info("MongoDB disconnected gracefully")
        except Exception as e:
            logger.error(f"Error disconnecting from MongoDB: {e}")
            raise

    def _on_connection_lost(self, reason: str) -> None:
        with self._status_lock:
            if self._status is not ConnectionStatus.CONNECTED:
                return
            self._status = ConnectionStatus.DISCONNECTED
        logger.warning(f"MongoDB connection lost: {reason}")

    def _on_heartbeat_succeeded(self, address) -> None:
        # The driver re-established its own monitor connection; no reconnect is issued here.
        with self._status_lock:
            if self._client is None or self._status is not ConnectionStatus.DISCONNECTED:
                return
            self._status = ConnectionStatus.CONNECTED
        logger.info(f"MongoDB reachable again at {address}")

    async def health_check(self) -> Dict[str, Any]:
        """Connection health for the health endpoint."""
        health = {
            "status": self._status.value,
            "database_connected": self.is_connected,
            "connection_attempts": self._connection_attempts,
            "connected_since": self._connected_at.isoformat() if self._connected_at else None,
        }

        if self.is_connected:
            try:
                start_time = time.time()
                await self._client.admin.command("ping")
                health["db_response_time_ms"] = round((time.time() - start_time) * 1000, 2)
            except PyMongoError as e:
                health["status"] = "degraded"
                health["error"] = str(e)

        return health
