from typing import Any

import pytest

from contact_relay.exceptions.delivery import DeliveryError
from contact_relay.schemas.contact import Envelope, Mailbox, VerificationResult
from contact_relay.settings import Settings


class FakeVerifier:
    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []
        self.result = VerificationResult(success=True)
        self.error: Exception | None = None

    async def verify(self, token: str, remote_ip: str) -> VerificationResult:
        self.calls.append((token, remote_ip))
        if self.error:
            raise self.error
        return self.result


class FakeQueue:
    def __init__(self) -> None:
        self.published: list[Envelope] = []
        self.error: Exception | None = None

    async def publish(self, envelope: Envelope) -> None:
        if self.error:
            raise self.error
        self.published.append(envelope)


class FakeMailSender:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str, bytes]] = []
        self.failures: list[int | None] = []

    async def send(self, sender: str, recipient: str, raw: bytes) -> None:
        self.sent.append((sender, recipient, raw))
        if self.failures:
            raise DeliveryError(self.failures.pop(0), "mail server said no")


class FakeRedis:
    """In-memory stand-in for the redis list and sorted set commands used by the dispatch queue."""

    def __init__(self) -> None:
        self.lists: dict[str, list[str]] = {}
        self.zsets: dict[str, dict[str, float]] = {}

    async def rpush(self, key: str, *values: str) -> int:
        self.lists.setdefault(key, []).extend(values)
        return len(self.lists[key])

    async def lmove(self, first: str, second: str, src: str, dest: str) -> str | None:
        source = self.lists.get(first, [])
        if not source:
            return None
        value = source.pop(0 if src == "LEFT" else -1)
        target = self.lists.setdefault(second, [])
        if dest == "LEFT":
            target.insert(0, value)
        else:
            target.append(value)
        return value

    async def lrem(self, key: str, count: int, value: str) -> int:
        items = self.lists.get(key, [])
        if value in items:
            items.remove(value)
            return 1
        return 0

    async def zadd(self, key: str, mapping: dict[str, float]) -> int:
        self.zsets.setdefault(key, {}).update(mapping)
        return len(mapping)

    async def eval(self, script: str, numkeys: int, *args: Any) -> int:
        # only the delayed promotion script is evaluated by the dispatch queue
        delayed_key, ready_key = args[:numkeys]
        now = float(args[numkeys])
        zset = self.zsets.get(delayed_key, {})
        due = [k for k, v in sorted(zset.items(), key=lambda x: x[1]) if v <= now]
        for item in due:
            del zset[item]
            self.lists.setdefault(ready_key, []).append(item)
        return len(due)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        sender_address="noreply@example.com",
        sender_name="Contact Form",
        recipient_address="inbox@example.com",
        recipient_name="Inbox",
        base_delay_seconds=30,
        turnstile_secret_key="my-secret",
    )


@pytest.fixture
def envelope() -> Envelope:
    return Envelope(
        sender=Mailbox(address="ann@x.com", name="Ann"),
        recipient=Mailbox(address="inbox@example.com", name="Inbox"),
        body="hi",
        enqueued_at_millis=1700000000000,
    )


@pytest.fixture
def verifier() -> FakeVerifier:
    return FakeVerifier()


@pytest.fixture
def queue() -> FakeQueue:
    return FakeQueue()


@pytest.fixture
def mail_sender() -> FakeMailSender:
    return FakeMailSender()


@pytest.fixture
def fake_redis() -> FakeRedis:
    return FakeRedis()
