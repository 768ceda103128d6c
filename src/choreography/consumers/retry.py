"""
Fixed-count retry with dead-lettering for message handlers.

with_retry wraps a MessageHandler so that every consumer applies the same
failure policy:

- malformed input is logged and dropped
- fatal failures (illegal state transition, validation) are dead-lettered
  after the first attempt
- everything else is retried up to ``max_attempts`` times with a fixed
  backoff, then dead-lettered

Dead-lettering republishes the original body with failure metadata and then
acknowledges the live message. If the dead-letter publish itself fails, the
exception propagates so that the broker does not acknowledge.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from choreography.bus.interface import InboundMessage, MessageBroker, MessageHandler
from choreography.exceptions import ErrorKind, classify_error

logger = logging.getLogger(__name__)

DLQ_REASON_EXHAUSTED = "retries_exhausted"
DLQ_REASON_FATAL = "non_retryable"


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry policy for message handlers.

    Attributes:
        max_attempts: Total attempts for a retryable failure, including the first
        backoff_seconds: Fixed delay between attempts
    """

    max_attempts: int = 3
    backoff_seconds: float = 1.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.backoff_seconds < 0:
            raise ValueError(f"backoff_seconds must be >= 0, got {self.backoff_seconds}")


@dataclass(frozen=True)
class FailureInfo:
    """Failure metadata attached to a dead-lettered message."""

    message: str
    exception_class: str
    retry_count: int
    failed_at: datetime
    reason: str = DLQ_REASON_EXHAUSTED

    @classmethod
    def from_exception(cls, error: BaseException, retry_count: int, reason: str) -> FailureInfo:
        return cls(
            message=str(error) or type(error).__name__,
            exception_class=type(error).__name__,
            retry_count=retry_count,
            failed_at=datetime.now(UTC),
            reason=reason,
        )

    def to_dict(self) -> dict[str, object]:
        return {
            "message": self.message,
            "exceptionClass": self.exception_class,
            "retryCount": self.retry_count,
            "failedAt": self.failed_at.isoformat(),
        }

    def to_headers(self, original_destination: str) -> dict[str, str]:
        return {
            "dlq_reason": self.reason,
            "dlq_error_type": self.exception_class,
            "dlq_error_message": self.message[:1000],
            "dlq_retry_count": str(self.retry_count),
            "dlq_timestamp": self.failed_at.isoformat(),
            "dlq_original_topic": original_destination,
        }


def dead_letter_body(body: bytes, failure: FailureInfo) -> bytes:
    """
    Add an ``error`` key to a JSON object body.

    Bodies that are not JSON objects are returned unchanged; the failure is
    still carried by the dlq_* headers.
    """
    try:
        document = json.loads(body)
    except (UnicodeDecodeError, ValueError):
        return body
    if not isinstance(document, dict):
        return body
    document["error"] = failure.to_dict()
    return json.dumps(document, separators=(",", ":")).encode("utf-8")


def with_retry(
    handler: MessageHandler,
    broker: MessageBroker,
    policy: RetryPolicy | None = None,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> MessageHandler:
    """
    Wrap a handler with the retry and dead-letter policy.

    Args:
        handler: The handler to protect
        broker: Broker used to publish dead letters
        policy: Retry policy (defaults to 3 attempts, 1 second apart)
        sleep: Sleep function, injectable for tests

    Returns:
        A handler that returns normally unless dead-lettering fails
    """
    policy = policy or RetryPolicy()

    async def handle(message: InboundMessage) -> None:
        attempt = 0
        while True:
            attempt += 1
            try:
                await handler(message)
                return
            except Exception as e:
                kind = classify_error(e)

                if kind is ErrorKind.MALFORMED:
                    logger.error(
                        "Dropping malformed message from %s: %s",
                        message.destination,
                        e,
                        exc_info=True,
                        extra={
                            "destination": message.destination,
                            "message_id": message.message_id,
                            "key": message.key,
                        },
                    )
                    return

                if kind.retryable and attempt < policy.max_attempts:
                    logger.warning(
                        "Handler failed on attempt %d/%d, retrying in %.2fs: %s",
                        attempt,
                        policy.max_attempts,
                        policy.backoff_seconds,
                        e,
                        extra={
                            "destination": message.destination,
                            "message_id": message.message_id,
                            "attempt": attempt,
                            "error_type": type(e).__name__,
                        },
                    )
                    await sleep(policy.backoff_seconds)
                    continue

                reason = DLQ_REASON_EXHAUSTED if kind.retryable else DLQ_REASON_FATAL
                await _dead_letter(broker, message, FailureInfo.from_exception(e, attempt, reason))
                return

    return handle


async def _dead_letter(broker: MessageBroker, message: InboundMessage, failure: FailureInfo) -> None:
    destination = broker.dead_letter_destination(message.destination)
    logger.error(
        "Sending message to dead-letter destination %s after %d attempt(s): %s",
        destination,
        failure.retry_count,
        failure.message,
        extra={
            "destination": message.destination,
            "dlq_destination": destination,
            "message_id": message.message_id,
            "key": message.key,
            "reason": failure.reason,
            "error_type": failure.exception_class,
        },
    )
    headers = {**message.headers, **failure.to_headers(message.destination)}
    await broker.publish_dead_letter(message, dead_letter_body(message.body, failure), headers)


__all__ = [
    "DLQ_REASON_EXHAUSTED",
    "DLQ_REASON_FATAL",
    "FailureInfo",
    "RetryPolicy",
    "dead_letter_body",
    "with_retry",
]
