import email
from email.errors import HeaderParseError

import pytest
from conftest import FakeMailSender
from pytest_mock import MockerFixture

from contact_relay.exceptions.delivery import DeliveryError
from contact_relay.schemas.contact import Envelope, Mailbox, QueueBody
from contact_relay.services.delivery import DeliveryWorker, compute_backoff
from contact_relay.services.dispatch import QueueMessage
from contact_relay.settings import Settings


def _message(envelope: Envelope, attempts: int = 1, id: str = "msg-1") -> QueueMessage:
    return QueueMessage(id, QueueBody(data=envelope, timestamp=envelope.enqueued_at_millis), attempts)


@pytest.fixture
def worker(settings: Settings, mail_sender: FakeMailSender) -> DeliveryWorker:
    return DeliveryWorker(settings, mail_sender)


@pytest.mark.parametrize("attempt,expected", [(1, 30), (2, 60), (3, 120), (4, 240), (10, 15360)])
def test__compute_backoff__without_jitter(attempt: int, expected: int, mocker: MockerFixture) -> None:
    mocker.patch("contact_relay.services.delivery.random.uniform", return_value=0)

    assert compute_backoff(30, attempt) == expected


@pytest.mark.parametrize("attempt", [1, 2, 3, 4])
def test__compute_backoff__jitter_bounds(attempt: int) -> None:
    lower = 30 * 2 ** (attempt - 1)

    for _ in range(50):
        assert lower <= compute_backoff(30, attempt) <= lower + 5


def test__compute_backoff__rounds_up(mocker: MockerFixture) -> None:
    mocker.patch("contact_relay.services.delivery.random.uniform", return_value=0.2)

    assert compute_backoff(10, 1) == 11


def test__compute_backoff__default_base(mocker: MockerFixture) -> None:
    mocker.patch("contact_relay.services.delivery.random.uniform", return_value=0)

    assert compute_backoff(0, 2) == 60


async def test__deliver(worker: DeliveryWorker, mail_sender: FakeMailSender, envelope: Envelope) -> None:
    message = _message(envelope)

    await worker.deliver(message)

    assert message.acked is True
    assert message.retry_delay is None
    [(sender, recipient, raw)] = mail_sender.sent
    assert sender == "noreply@example.com"
    assert recipient == "inbox@example.com"
    rendered = email.message_from_bytes(raw)
    assert rendered["From"] == "Contact Form <noreply@example.com>"
    assert rendered["Reply-To"] == "Ann <ann@x.com>"


@pytest.mark.parametrize("status", [421, 450, 503, 504])
@pytest.mark.parametrize("attempts", [1, 2, 5])
async def test__deliver__transient_failure(
    status: int, attempts: int, worker: DeliveryWorker, mail_sender: FakeMailSender, envelope: Envelope
) -> None:
    mail_sender.failures = [status]
    message = _message(envelope, attempts)

    await worker.deliver(message)

    lower = 30 * 2 ** (attempts - 1)
    assert message.acked is False
    assert message.retry_delay is not None
    assert lower <= message.retry_delay <= lower + 5


@pytest.mark.parametrize("status", [550, 554, 535, 400, None])
async def test__deliver__permanent_failure(
    status: int | None, worker: DeliveryWorker, mail_sender: FakeMailSender, envelope: Envelope
) -> None:
    mail_sender.failures = [status]
    message = _message(envelope)

    with pytest.raises(DeliveryError) as exc_info:
        await worker.deliver(message)

    assert exc_info.value.status == status
    assert message.settled is False


async def test__deliver__unexpected_error_is_permanent(
    worker: DeliveryWorker, envelope: Envelope, mocker: MockerFixture
) -> None:
    worker.mail_sender = mocker.AsyncMock()
    worker.mail_sender.send.side_effect = RuntimeError("boom")
    message = _message(envelope)

    with pytest.raises(RuntimeError):
        await worker.deliver(message)

    assert message.settled is False


async def test__handle_batch(worker: DeliveryWorker, mail_sender: FakeMailSender, envelope: Envelope) -> None:
    messages = [_message(envelope, id=f"msg-{i}") for i in range(3)]

    await worker.handle_batch(messages)

    assert all(message.acked for message in messages)
    assert len(mail_sender.sent) == 3


async def test__handle_batch__permanent_failure_does_not_block_siblings(
    worker: DeliveryWorker, mail_sender: FakeMailSender, envelope: Envelope
) -> None:
    mail_sender.failures = [550, 503]
    messages = [_message(envelope, id=f"msg-{i}") for i in range(3)]

    with pytest.raises(ExceptionGroup) as exc_info:
        await worker.handle_batch(messages)

    [error] = exc_info.value.exceptions
    assert isinstance(error, DeliveryError)
    assert error.status == 550
    assert messages[0].settled is False
    assert messages[1].retry_delay is not None
    assert messages[2].acked is True


async def test__ack_is_not_followed_by_retry(envelope: Envelope) -> None:
    message = _message(envelope)

    message.ack()
    message.retry(30)

    assert message.acked is True
    assert message.retry_delay is None


async def test__deliver__render_error_is_logged_with_attempt(
    worker: DeliveryWorker, mail_sender: FakeMailSender, envelope: Envelope, caplog: pytest.LogCaptureFixture
) -> None:
    broken = envelope.model_copy(update={"sender": Mailbox(address="ann@x.com", name="Ann\nBcc: evil@attacker.com")})
    message = _message(broken, attempts=2)

    with pytest.raises(HeaderParseError):
        await worker.deliver(message)

    assert message.settled is False
    assert mail_sender.sent == []
    assert any("attempt 2, status None" in record.getMessage() for record in caplog.records)
