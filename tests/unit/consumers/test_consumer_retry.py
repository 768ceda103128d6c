"""Unit tests for the retry and dead-letter policy."""

import json
from datetime import UTC, datetime

import pydantic
import pytest

from choreography.bus.interface import InboundMessage
from choreography.consumers.retry import (
    DLQ_REASON_EXHAUSTED,
    DLQ_REASON_FATAL,
    FailureInfo,
    RetryPolicy,
    dead_letter_body,
    with_retry,
)
from choreography.domain.values import Money
from choreography.exceptions import (
    AggregateNotFoundError,
    BrokerError,
    DomainValidationError,
    IllegalStateTransitionError,
    MalformedEnvelopeError,
    TransientError,
)
from tests.fixtures import FailingBroker, RecordingBroker, SleepRecorder


def _message(body: bytes = b'{"eventId":"evt-1"}') -> InboundMessage:
    return InboundMessage(
        destination="order.created",
        body=body,
        key="ord-1",
        headers={"event_type": "ORDER_CREATED"},
        message_id="evt-1",
    )


class _FailingHandler:
    """Handler raising the given errors in order, then succeeding."""

    def __init__(self, *errors: BaseException) -> None:
        self._errors = list(errors)
        self.calls = 0

    async def __call__(self, message: InboundMessage) -> None:
        self.calls += 1
        if self._errors:
            raise self._errors.pop(0)


class TestRetryPolicy:
    def test_defaults(self) -> None:
        policy = RetryPolicy()
        assert policy.max_attempts == 3
        assert policy.backoff_seconds == 1.0

    def test_max_attempts_must_be_positive(self) -> None:
        with pytest.raises(ValueError, match="max_attempts"):
            RetryPolicy(max_attempts=0)

    def test_backoff_must_not_be_negative(self) -> None:
        with pytest.raises(ValueError, match="backoff_seconds"):
            RetryPolicy(backoff_seconds=-0.1)


class TestWithRetry:
    @pytest.mark.asyncio
    async def test_success_is_not_retried(
        self, recording_broker: RecordingBroker, sleep: SleepRecorder
    ) -> None:
        handler = _FailingHandler()
        await with_retry(handler, recording_broker, sleep=sleep)(_message())
        assert handler.calls == 1
        assert sleep.delays == []
        assert recording_broker.dead_letters == []

    @pytest.mark.asyncio
    async def test_transient_failure_recovers(
        self, recording_broker: RecordingBroker, sleep: SleepRecorder
    ) -> None:
        """A handler that fails twice then succeeds is not dead-lettered."""
        handler = _FailingHandler(TransientError("db down"), TransientError("db down"))
        wrapped = with_retry(handler, recording_broker, RetryPolicy(3, 1.0), sleep=sleep)

        await wrapped(_message())

        assert handler.calls == 3
        assert sleep.delays == [1.0, 1.0]
        assert recording_broker.dead_letters == []

    @pytest.mark.asyncio
    async def test_exhausted_retries_go_to_dlq(
        self, recording_broker: RecordingBroker, sleep: SleepRecorder
    ) -> None:
        """After max_attempts the original message is dead-lettered with failure headers."""
        handler = _FailingHandler(*[TransientError("timeout")] * 3)
        wrapped = with_retry(handler, recording_broker, RetryPolicy(3, 0.5), sleep=sleep)

        await wrapped(_message())

        assert handler.calls == 3
        assert sleep.delays == [0.5, 0.5]
        [dead] = recording_broker.dead_letters
        assert dead.destination == "order.created.dlq"
        assert dead.key == "ord-1"
        assert dead.message_id == "evt-1"
        assert dead.headers["event_type"] == "ORDER_CREATED"
        assert dead.headers["dlq_reason"] == DLQ_REASON_EXHAUSTED
        assert dead.headers["dlq_error_type"] == "TransientError"
        assert dead.headers["dlq_retry_count"] == "3"
        assert dead.headers["dlq_original_topic"] == "order.created"

        body = json.loads(dead.body)
        assert body["eventId"] == "evt-1"
        assert body["error"]["message"] == "timeout"
        assert body["error"]["exceptionClass"] == "TransientError"
        assert body["error"]["retryCount"] == 3

    @pytest.mark.asyncio
    async def test_unknown_exceptions_are_retried(
        self, recording_broker: RecordingBroker, sleep: SleepRecorder
    ) -> None:
        """Unrecognised failures are treated as transient."""
        handler = _FailingHandler(RuntimeError("boom"))
        await with_retry(handler, recording_broker, sleep=sleep)(_message())
        assert handler.calls == 2
        assert recording_broker.dead_letters == []

    @pytest.mark.asyncio
    async def test_missing_aggregate_is_retried(
        self, recording_broker: RecordingBroker, sleep: SleepRecorder
    ) -> None:
        """An event arriving before its aggregate is retried."""
        handler = _FailingHandler(AggregateNotFoundError("Order", "ord-1"))
        await with_retry(handler, recording_broker, sleep=sleep)(_message())
        assert handler.calls == 2

    @pytest.mark.parametrize(
        "error",
        [
            IllegalStateTransitionError("Order", "ord-1", "mark paid", "CREATED", "PAYMENT_PENDING"),
            DomainValidationError("quantity must be positive"),
        ],
    )
    @pytest.mark.asyncio
    async def test_fatal_errors_skip_retries(
        self,
        recording_broker: RecordingBroker,
        sleep: SleepRecorder,
        error: Exception,
    ) -> None:
        """Illegal transitions and validation failures go straight to the DLQ."""
        handler = _FailingHandler(error)
        await with_retry(handler, recording_broker, sleep=sleep)(_message())

        assert handler.calls == 1
        assert sleep.delays == []
        [dead] = recording_broker.dead_letters
        assert dead.headers["dlq_reason"] == DLQ_REASON_FATAL
        assert dead.headers["dlq_retry_count"] == "1"

    @pytest.mark.asyncio
    async def test_pydantic_validation_is_fatal(
        self, recording_broker: RecordingBroker, sleep: SleepRecorder
    ) -> None:
        with pytest.raises(pydantic.ValidationError) as exc_info:
            Money.model_validate({"amount": "1"})
        handler = _FailingHandler(exc_info.value)

        await with_retry(handler, recording_broker, sleep=sleep)(_message())

        assert handler.calls == 1
        assert recording_broker.dead_letters[0].headers["dlq_reason"] == DLQ_REASON_FATAL

    @pytest.mark.asyncio
    async def test_malformed_messages_are_dropped(
        self, recording_broker: RecordingBroker, sleep: SleepRecorder
    ) -> None:
        """Undecodable messages are neither retried nor dead-lettered."""
        handler = _FailingHandler(MalformedEnvelopeError("not json", raw=b"{"))
        await with_retry(handler, recording_broker, sleep=sleep)(_message(b"{"))

        assert handler.calls == 1
        assert recording_broker.dead_letters == []
        assert recording_broker.published == []

    @pytest.mark.asyncio
    async def test_dead_letter_failure_propagates(self, sleep: SleepRecorder) -> None:
        """If the DLQ publish fails the message must not be acknowledged."""
        handler = _FailingHandler(DomainValidationError("bad"))
        wrapped = with_retry(handler, FailingBroker(), sleep=sleep)

        with pytest.raises(BrokerError):
            await wrapped(_message())

    @pytest.mark.asyncio
    async def test_single_attempt_policy(
        self, recording_broker: RecordingBroker, sleep: SleepRecorder
    ) -> None:
        handler = _FailingHandler(TransientError("x"))
        wrapped = with_retry(handler, recording_broker, RetryPolicy(max_attempts=1), sleep=sleep)
        await wrapped(_message())
        assert handler.calls == 1
        assert recording_broker.dead_letters[0].headers["dlq_reason"] == DLQ_REASON_EXHAUSTED


class TestDeadLetterBody:
    def _failure(self) -> FailureInfo:
        return FailureInfo(
            message="boom",
            exception_class="TransientError",
            retry_count=3,
            failed_at=datetime(2024, 5, 1, tzinfo=UTC),
        )

    def test_adds_error_to_json_object(self) -> None:
        body = dead_letter_body(b'{"orderId":"ord-1"}', self._failure())
        assert json.loads(body) == {
            "orderId": "ord-1",
            "error": {
                "message": "boom",
                "exceptionClass": "TransientError",
                "retryCount": 3,
                "failedAt": "2024-05-01T00:00:00+00:00",
            },
        }

    @pytest.mark.parametrize("body", [b"not json", b"[1, 2]", b"\xff"])
    def test_other_bodies_unchanged(self, body: bytes) -> None:
        """Non-object bodies keep their bytes; headers still carry the failure."""
        assert dead_letter_body(body, self._failure()) == body

    def test_from_exception_uses_class_name_for_empty_message(self) -> None:
        failure = FailureInfo.from_exception(TimeoutError(), 2, DLQ_REASON_EXHAUSTED)
        assert failure.message == "TimeoutError"
        assert failure.retry_count == 2

    def test_header_message_is_truncated(self) -> None:
        failure = FailureInfo.from_exception(RuntimeError("x" * 5000), 1, DLQ_REASON_FATAL)
        headers = failure.to_headers("order.created")
        assert len(headers["dlq_error_message"]) == 1000
        assert headers["dlq_reason"] == DLQ_REASON_FATAL
