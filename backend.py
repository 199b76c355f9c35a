import asyncio
import json
import uuid
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import redis

from constants import (
    CREATED_COLUMNS,
    INDEXED_COLUMNS,
    REDIS_HOST,
    REDIS_PASSWORD,
    REDIS_PORT,
    SUBSCRIPTION_POLL_TIMEOUT,
    TABLES,
)
from errors import StoreError
from logging_config import get_logger
from redis_keys import REDIS_CHANGES_CHANNEL, REDIS_COLUMN_INDEX_KEY, REDIS_INDEX_KEY, REDIS_ROW_KEY
from schemas.events import ChangeEvent, ChangeType

logger = get_logger(__name__)

Record = dict[str, Any]
ChangeCallback = Callable[[ChangeEvent], None]


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _score(value: Optional[str]) -> float:
    """Sorted-set score for a creation timestamp."""
    if not value:
        return datetime.now(timezone.utc).timestamp()
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
    except (ValueError, TypeError, AttributeError):
        return datetime.now(timezone.utc).timestamp()


def create_redis_client() -> redis.Redis:
    try:
        client = redis.Redis(host=REDIS_HOST, port=REDIS_PORT, password=REDIS_PASSWORD, decode_responses=True)
        # Test connection
        client.ping()
        logger.info(f"Redis client connected successfully to {REDIS_HOST}:{REDIS_PORT}")
        return client
    except Exception as e:
        logger.error(f"Failed to connect to Redis at {REDIS_HOST}:{REDIS_PORT}: {e}", exc_info=True)
        raise


class Subscription:
    """A live feed of change events for one table, optionally filtered by column equality.

    The Redis channel is subscribed when the object is built, so no event published
    afterwards is missed. Events are delivered to `callback` from a task on the
    event loop that created the subscription.
    """

    def __init__(self, backend: "RedisBackend", table: str, callback: ChangeCallback,
                 filters: Optional[Record] = None, poll_timeout: float = SUBSCRIPTION_POLL_TIMEOUT):
        self.table = table
        self.callback = callback
        self.filters = dict(filters or {})
        self.poll_timeout = poll_timeout
        self.channel = backend.get_changes_channel_name(table)
        try:
            self.pubsub = backend.pubsub_client.pubsub()
            self.pubsub.subscribe(self.channel)
        except redis.RedisError as e:
            logger.error(f"Failed to subscribe to channel {self.channel}: {e}", exc_info=True)
            raise StoreError(f"Could not subscribe to {table}") from e
        logger.debug(f"Subscribed to Redis channel {self.channel} with filters {self.filters}")
        self._task = asyncio.get_running_loop().create_task(self._listen())

    @property
    def active(self) -> bool:
        return not self._task.done()

    def matches(self, event: ChangeEvent) -> bool:
        record = event.record or {}
        return all(record.get(column) == value for column, value in self.filters.items())

    async def _listen(self):
        loop = asyncio.get_running_loop()

        def get_message():
            """Blocking call to get next message from Redis pub/sub with timeout."""
            try:
                return self.pubsub.get_message(timeout=self.poll_timeout, ignore_subscribe_messages=True)
            except Exception as e:
                logger.debug(f"pubsub.get_message() failed on {self.channel}: {e}")
                return None

        try:
            while True:
                message = await loop.run_in_executor(None, get_message)
                if message is None:
                    # Timeout or no message, continue loop
                    continue
                if message.get("type") != "message":
                    continue
                try:
                    event = ChangeEvent.model_validate(json.loads(message["data"]))
                except (json.JSONDecodeError, ValueError) as e:
                    logger.error(f"Error parsing change event on {self.channel}: {e}")
                    continue
                if not self.matches(event):
                    continue
                logger.debug(f"Delivering {event.type.value} on {self.table} to subscriber")
                try:
                    self.callback(event)
                except Exception as e:
                    logger.error(f"Subscriber callback failed for {self.table} event: {e}", exc_info=True)
        except asyncio.CancelledError:
            logger.debug(f"Listener for {self.channel} cancelled")
        finally:
            try:
                self.pubsub.close()
                logger.debug(f"Closed pub/sub connection for channel: {self.channel}")
            except Exception as e:
                logger.error(f"Error closing pub/sub for {self.channel}: {e}")

    def cancel(self):
        if not self._task.done():
            self._task.cancel()

    async def close(self):
        self.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass


class RedisBackend:
    """Row store with change notification, backed by Redis hashes, sorted sets and pub/sub."""

    def __init__(self, redis_client: Optional[redis.Redis] = None, pubsub_client: Optional[redis.Redis] = None,
                 poll_timeout: float = SUBSCRIPTION_POLL_TIMEOUT):
        self.redis_client = redis_client or create_redis_client()
        # Pub/sub connections come from their own pool when a dedicated client is given
        self.pubsub_client = pubsub_client or self.redis_client
        self.poll_timeout = poll_timeout
        logger.info("RedisBackend initialized")

    @staticmethod
    def _check_table(table: str):
        if table not in TABLES:
            raise ValueError(f"Unknown table: {table}")

    @staticmethod
    def _encode(record: Record) -> dict[str, str]:
        # Skip None values, a missing field reads back as None
        return {k: json.dumps(v) for k, v in record.items() if v is not None}

    @staticmethod
    def _decode(row: dict[str, str]) -> Record:
        result = {}
        for k, v in row.items():
            try:
                result[k] = json.loads(v)
            except (json.JSONDecodeError, TypeError):
                result[k] = v
        return result

    def get_changes_channel_name(self, table: str) -> str:
        return REDIS_CHANGES_CHANNEL.format(table=table)

    def _publish(self, event: ChangeEvent):
        channel = self.get_changes_channel_name(event.table)
        subscribers = self.redis_client.publish(channel, event.model_dump_json())
        logger.debug(f"Published {event.type.value} on {channel}, {subscribers} subscribers")

    def ping(self) -> bool:
        try:
            return bool(self.redis_client.ping())
        except redis.RedisError as e:
            logger.error(f"Redis ping failed: {e}")
            return False

    def get(self, table: str, row_id: str) -> Optional[Record]:
        self._check_table(table)
        try:
            row = self.redis_client.hgetall(REDIS_ROW_KEY.format(table=table, id=row_id))
        except redis.RedisError as e:
            logger.error(f"Error reading {table}/{row_id}: {e}", exc_info=True)
            raise StoreError(f"Could not read {table}") from e
        if not row:
            logger.debug(f"Row {table}/{row_id} not found")
            return None
        return self._decode(row)

    def insert(self, table: str, record: Record) -> Record:
        """Write a new row and broadcast an INSERT.

        An id is generated when the record has none; the table's creation column
        is stamped with the current time when left empty.
        """
        self._check_table(table)
        record = dict(record)
        record.setdefault("id", uuid.uuid4().hex)
        created_column = CREATED_COLUMNS[table]
        if table != "games" and not record.get(created_column):
            record[created_column] = utc_now_iso()
        row_id = record["id"]
        score = _score(record.get(created_column))

        try:
            pipe = self.redis_client.pipeline()
            pipe.hset(REDIS_ROW_KEY.format(table=table, id=row_id), mapping=self._encode(record))
            pipe.zadd(REDIS_INDEX_KEY.format(table=table), {row_id: score})
            for column in INDEXED_COLUMNS.get(table, ()):
                if record.get(column) is not None:
                    key = REDIS_COLUMN_INDEX_KEY.format(table=table, column=column, value=record[column])
                    pipe.zadd(key, {row_id: score})
            pipe.execute()
            self._publish(ChangeEvent(type=ChangeType.INSERT, table=table, new=record))
        except redis.RedisError as e:
            logger.error(f"Error inserting into {table}: {e}", exc_info=True)
            raise StoreError(f"Could not insert into {table}") from e

        logger.debug(f"Inserted {table}/{row_id}")
        return record

    def update(self, table: str, row_id: str, changes: Record) -> Optional[Record]:
        """Merge `changes` into an existing row and broadcast an UPDATE.

        A None value clears the column. Returns None when the row does not exist.
        """
        old = self.get(table, row_id)
        if old is None:
            logger.warning(f"Update skipped: {table}/{row_id} does not exist")
            return None
        new = {**old, **changes, "id": row_id}
        key = REDIS_ROW_KEY.format(table=table, id=row_id)
        cleared = [k for k, v in changes.items() if v is None]
        written = {k: v for k, v in changes.items() if v is not None and k != "id"}

        try:
            pipe = self.redis_client.pipeline()
            if written:
                pipe.hset(key, mapping=self._encode(written))
            if cleared:
                pipe.hdel(key, *cleared)
            score = _score(old.get(CREATED_COLUMNS[table]))
            for column in INDEXED_COLUMNS.get(table, ()):
                if column in changes and changes[column] != old.get(column):
                    if old.get(column) is not None:
                        pipe.zrem(REDIS_COLUMN_INDEX_KEY.format(table=table, column=column, value=old[column]), row_id)
                    if changes[column] is not None:
                        pipe.zadd(REDIS_COLUMN_INDEX_KEY.format(table=table, column=column, value=changes[column]),
                                  {row_id: score})
            pipe.execute()
            self._publish(ChangeEvent(type=ChangeType.UPDATE, table=table, new=new, old=old))
        except redis.RedisError as e:
            logger.error(f"Error updating {table}/{row_id}: {e}", exc_info=True)
            raise StoreError(f"Could not update {table}") from e

        logger.debug(f"Updated {table}/{row_id}: {sorted(changes)}")
        return {k: v for k, v in new.items() if v is not None}

    def select(self, table: str, filters: Optional[Record] = None, descending: bool = False) -> list[Record]:
        """Rows matching every equality filter, ordered by creation time."""
        self._check_table(table)
        filters = filters or {}
        index_key = REDIS_INDEX_KEY.format(table=table)
        for column in INDEXED_COLUMNS.get(table, ()):
            if filters.get(column) is not None:
                index_key = REDIS_COLUMN_INDEX_KEY.format(table=table, column=column, value=filters[column])
                break

        try:
            row_ids = self.redis_client.zrange(index_key, 0, -1, desc=descending)
            pipe = self.redis_client.pipeline()
            for row_id in row_ids:
                pipe.hgetall(REDIS_ROW_KEY.format(table=table, id=row_id))
            rows = pipe.execute() if row_ids else []
        except redis.RedisError as e:
            logger.error(f"Error selecting from {table}: {e}", exc_info=True)
            raise StoreError(f"Could not read {table}") from e

        result = []
        for row in rows:
            if not row:
                continue
            record = self._decode(row)
            if all(record.get(column) == value for column, value in filters.items()):
                result.append(record)
        logger.debug(f"Selected {len(result)} rows from {table} with filters {filters}")
        return result

    def subscribe(self, table: str, callback: ChangeCallback, filters: Optional[Record] = None,
                  poll_timeout: Optional[float] = None) -> Subscription:
        """Deliver change events on `table` matching `filters` to `callback`.

        Must be called from a running event loop. Cancel the returned handle to stop.
        """
        self._check_table(table)
        return Subscription(self, table, callback, filters=filters,
                            poll_timeout=poll_timeout if poll_timeout is not None else self.poll_timeout)
