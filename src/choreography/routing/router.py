"""
Choreography router.

A router belongs to one service. It holds a static table of routes, each
binding a broker destination to a decoder and a business handler, and
subscribes them all on ``register()``. Every subscription runs the same
handler chain:

    with_retry( decode -> IdempotentConsumer.run( business handler ) )
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import pydantic

from choreography.bus.interface import InboundMessage, MessageBroker, MessageHandler
from choreography.consumers.idempotency import IdempotentConsumer, ProcessedEventStore
from choreography.consumers.retry import RetryPolicy, with_retry
from choreography.domain.base import describe_validation_error
from choreography.events.envelope import EventEnvelope, decode_envelope
from choreography.events.payloads import Payload, ShippingRequest
from choreography.events.publisher import HEADER_CORRELATION_ID
from choreography.events.types import SHIPPING_REQUEST_TYPE
from choreography.exceptions import MalformedEnvelopeError
from choreography.observability import Tracer, create_tracer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DecodedMessage:
    """
    A message after decoding, ready for the idempotency guard.

    Attributes:
        dedup_key: Idempotency key (event id, or message id for queue messages)
        event_type: Type tag stored with the outcome
        value: Decoded content (an EventEnvelope or a queue payload model)
        correlation_id: Correlation id of the flow, when known
    """

    dedup_key: str
    event_type: str
    value: Any
    correlation_id: str | None = None


Decoder = Callable[[InboundMessage], DecodedMessage]
RouteHandler = Callable[[DecodedMessage], Awaitable[str | None]]


@dataclass(frozen=True)
class Route:
    """One inbound destination of a service."""

    broker: MessageBroker
    destination: str
    decoder: Decoder
    handler: RouteHandler
    name: str = field(default="")


def envelope_decoder(payload_type: type[Payload] | None = None) -> Decoder:
    """
    Decoder for log-broker messages carrying an event envelope.

    Args:
        payload_type: Expected payload model (defaults to the one registered
            for the envelope's event type)
    """

    def decode(message: InboundMessage) -> DecodedMessage:
        envelope: EventEnvelope = decode_envelope(message.body, payload_type)
        return DecodedMessage(
            dedup_key=envelope.event_id,
            event_type=envelope.event_type,
            value=envelope,
            correlation_id=envelope.correlation_id,
        )

    return decode


def shipping_request_decoder(message: InboundMessage) -> DecodedMessage:
    """
    Decoder for shipping queue messages.

    Queue messages have no envelope. They are deduplicated by message id, or
    by ``<orderId>:<action>`` when the producer did not set one.

    Raises:
        MalformedEnvelopeError: If the body is not a valid shipping request
    """
    try:
        document = json.loads(message.body)
    except (UnicodeDecodeError, ValueError) as e:
        raise MalformedEnvelopeError("shipping request is not valid JSON", raw=message.body) from e
    if not isinstance(document, dict):
        raise MalformedEnvelopeError("shipping request must be a JSON object", raw=message.body)
    try:
        request = ShippingRequest.model_validate(document)
    except pydantic.ValidationError as e:
        raise MalformedEnvelopeError(
            f"invalid shipping request: {describe_validation_error(e)}", raw=message.body
        ) from e

    dedup_key = message.message_id or f"{request.order_id}:{request.action}"
    return DecodedMessage(
        dedup_key=dedup_key,
        event_type=SHIPPING_REQUEST_TYPE,
        value=request,
        correlation_id=message.header(HEADER_CORRELATION_ID),
    )


class ChoreographyRouter:
    """
    Routes inbound messages of one service to its handlers.

    The service name is used as the consumer group for every subscription
    and as the scope of the processed-event records.

    Example:
        >>> router = ChoreographyRouter("order-service", store)
        >>> router.add_route(Route(log_broker, "shipment.arranged", decoder, handler))
        >>> router.register()
    """

    def __init__(
        self,
        service_name: str,
        store: ProcessedEventStore,
        retry_policy: RetryPolicy | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        tracer: Tracer | None = None,
        enable_tracing: bool = True,
    ) -> None:
        self._service_name = str(service_name)
        self._retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep
        self._tracer = tracer or create_tracer(__name__, enable_tracing)
        self._guard = IdempotentConsumer(store, self._service_name, tracer=self._tracer)
        self._routes: list[Route] = []
        self._registered = False

    @property
    def service_name(self) -> str:
        return self._service_name

    @property
    def guard(self) -> IdempotentConsumer:
        return self._guard

    @property
    def routes(self) -> list[Route]:
        return list(self._routes)

    @property
    def is_registered(self) -> bool:
        return self._registered

    def add_route(self, route: Route) -> None:
        if self._registered:
            raise RuntimeError(f"Router for {self._service_name} is already registered")
        for existing in self._routes:
            if existing.broker is route.broker and existing.destination == route.destination:
                raise ValueError(
                    f"{self._service_name} already routes {route.destination} on this broker"
                )
        self._routes.append(route)

    def build_handler(self, route: Route) -> MessageHandler:
        """Build the full handler chain for one route."""

        async def dispatch(message: InboundMessage) -> None:
            decoded = route.decoder(message)
            logger.debug(
                "%s handling %s from %s",
                self._service_name,
                decoded.event_type,
                message.destination,
                extra={
                    "service": self._service_name,
                    "destination": message.destination,
                    "dedup_key": decoded.dedup_key,
                    "event_type": decoded.event_type,
                    "correlation_id": decoded.correlation_id,
                },
            )
            await self._guard.run(
                decoded.dedup_key,
                decoded.event_type,
                lambda: route.handler(decoded),
            )

        return with_retry(dispatch, route.broker, self._retry_policy, sleep=self._sleep)

    def register(self) -> None:
        """
        Subscribe every route to its broker.

        Raises:
            RuntimeError: If the router was already registered
        """
        if self._registered:
            raise RuntimeError(f"Router for {self._service_name} is already registered")

        for route in self._routes:
            route.broker.subscribe(
                route.destination,
                self.build_handler(route),
                group=self._service_name,
            )
            logger.info(
                "Registered %s route %s",
                self._service_name,
                route.name or route.destination,
                extra={"service": self._service_name, "destination": route.destination},
            )
        self._registered = True


__all__ = [
    "ChoreographyRouter",
    "DecodedMessage",
    "Decoder",
    "Route",
    "RouteHandler",
    "envelope_decoder",
    "shipping_request_decoder",
]
