"""
Durable at-least-once dispatch queue between the intake endpoint and the delivery worker.

Items live in four redis keys derived from the queue name:

* `<name>`            list of items ready for delivery
* `<name>:processing` list of items handed to a consumer that have not been settled yet
* `<name>:delayed`    sorted set of items scheduled for redelivery (score = due unix time)
* `<name>:dead`       list of items that failed `max_retries` times without an explicit retry

The processing list is shared, so only one consumer may run per queue name: `requeue_inflight` at startup returns
every unsettled item to the ready list.
"""

import asyncio
import json
from collections.abc import Awaitable, Callable
from typing import Any, Protocol
from uuid import uuid4

from redis.asyncio import Redis

from ..logger import get_logger
from ..schemas.contact import Envelope, QueueBody
from ..utils.utc import now_millis, utcnow


logger = get_logger(__name__)

# KEYS[1] = delayed set, KEYS[2] = ready list, ARGV[1] = current unix time
PROMOTE_DELAYED_SCRIPT = """
local items = redis.call("ZRANGEBYSCORE", KEYS[1], "-inf", ARGV[1])
for _, item in ipairs(items) do
    redis.call("ZREM", KEYS[1], item)
    redis.call("RPUSH", KEYS[2], item)
end
return #items
"""


class DispatchQueue(Protocol):
    async def publish(self, envelope: Envelope) -> None:
        ...


class QueueMessage:
    """A single delivery attempt of a queued envelope."""

    def __init__(self, id: str, body: QueueBody, attempts: int, raw: str | None = None) -> None:
        self.id = id
        self.body = body
        self.attempts = attempts
        self.raw = raw
        self.acked = False
        self.retry_delay: int | None = None

    @property
    def envelope(self) -> Envelope:
        return self.body.data

    @property
    def settled(self) -> bool:
        return self.acked or self.retry_delay is not None

    def ack(self) -> None:
        if self.retry_delay is not None:
            logger.warning(f"Ignoring ack for message {self.id}, retry already requested")
            return
        self.acked = True

    def retry(self, delay_seconds: int) -> None:
        if self.acked:
            logger.warning(f"Ignoring retry for message {self.id}, already acknowledged")
            return
        self.retry_delay = delay_seconds

    def serialize(self, attempts: int) -> str:
        return json.dumps({"id": self.id, "attempts": attempts, "body": self.body.model_dump(mode="json")})

    @staticmethod
    def deserialize(raw: str) -> "QueueMessage":
        data: dict[str, Any] = json.loads(raw)
        return QueueMessage(data["id"], QueueBody.model_validate(data["body"]), data["attempts"], raw)


BatchHandler = Callable[[list[QueueMessage]], Awaitable[None]]


class RedisDispatchQueue:
    def __init__(self, redis: Redis, name: str, *, max_retries: int = 3) -> None:
        self.redis = redis
        self.name = name
        self.max_retries = max_retries

    @property
    def processing_key(self) -> str:
        return f"{self.name}:processing"

    @property
    def delayed_key(self) -> str:
        return f"{self.name}:delayed"

    @property
    def dead_key(self) -> str:
        return f"{self.name}:dead"

    async def publish(self, envelope: Envelope) -> None:
        message = QueueMessage(str(uuid4()), QueueBody(data=envelope, timestamp=now_millis()), 1)
        await self.redis.rpush(self.name, message.serialize(message.attempts))

    async def promote_delayed(self) -> int:
        """Move all delayed items that are due back into the ready list."""

        return int(
            await self.redis.eval(PROMOTE_DELAYED_SCRIPT, 2, self.delayed_key, self.name, utcnow().timestamp())
        )

    async def requeue_inflight(self) -> int:
        """Return items left in the processing list by a crashed consumer to the ready list."""

        count = 0
        while await self.redis.lmove(self.processing_key, self.name, "RIGHT", "LEFT") is not None:
            count += 1
        if count:
            logger.warning(f"Requeued {count} unsettled messages from {self.processing_key}")
        return count

    async def receive(self, batch_size: int) -> list[QueueMessage]:
        await self.promote_delayed()

        messages = []
        for _ in range(batch_size):
            raw = await self.redis.lmove(self.name, self.processing_key, "LEFT", "RIGHT")
            if raw is None:
                break
            messages.append(QueueMessage.deserialize(raw))
        return messages

    async def settle(self, messages: list[QueueMessage]) -> None:
        for message in messages:
            if message.acked:
                pass
            elif message.retry_delay is not None:
                due = utcnow().timestamp() + message.retry_delay
                await self.redis.zadd(self.delayed_key, {message.serialize(message.attempts + 1): due})
            elif message.attempts < self.max_retries:
                logger.warning(f"Message {message.id} failed on attempt {message.attempts}, redelivering")
                await self.redis.rpush(self.name, message.serialize(message.attempts + 1))
            else:
                logger.error(f"Message {message.id} failed on attempt {message.attempts}, moving to {self.dead_key}")
                await self.redis.rpush(self.dead_key, message.serialize(message.attempts))

            await self.redis.lrem(self.processing_key, 1, message.raw)

    async def consume(
        self,
        handler: BatchHandler,
        *,
        batch_size: int = 10,
        poll_interval: float = 1,
        stop: asyncio.Event | None = None,
    ) -> None:
        stop = stop or asyncio.Event()
        await self.requeue_inflight()

        logger.info(f"Consuming messages from {self.name}")
        while not stop.is_set():
            try:
                messages = await self.receive(batch_size)
            except Exception as e:
                logger.error(f"Could not receive messages from {self.name}: {e!r}")
                messages = []

            if not messages:
                try:
                    await asyncio.wait_for(stop.wait(), poll_interval)
                except TimeoutError:
                    pass
                continue

            try:
                await handler(messages)
            except Exception as e:
                logger.error(f"Batch handler failed for {len(messages)} messages: {e!r}")

            try:
                await self.settle(messages)
            except Exception as e:
                # unsettled items stay in the processing list until the next startup
                logger.error(f"Could not settle {len(messages)} messages on {self.name}: {e!r}")
