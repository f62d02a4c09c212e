# reactor/bus.py
from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Final, Iterator, Optional
from urllib.parse import quote

import pika
from pika.exceptions import AMQPError

from .exceptions import ConnectFailure, ConnectionLost, MissingCredentials
from .models import BusCredentials, Event

logger = logging.getLogger(__name__)

EXCHANGE_NAME: Final[str] = "pubsub"
EXCHANGE_TYPE: Final[str] = "topic"
BINDING_KEY: Final[str] = "#"

_SETUP_ERRORS = (AMQPError, OSError, ValueError)


def build_url(credentials: BusCredentials) -> str:
    netloc = f"{quote(credentials.user, safe='')}:{quote(credentials.password.get_secret_value(), safe='')}@{credentials.host}"
    if credentials.port > 0:
        netloc = f"{netloc}:{credentials.port}"
    return f"amqps://{netloc}/"


class AMQPBusSession:
    """
    Connection, channel and subscription to the build service's topic
    exchange.

    The exchange must already exist; the queue is anonymous, exclusive and
    removed by the broker when the connection goes away. Deliveries are
    acknowledged on receipt. pika's blocking adapter is not thread safe, so
    every call on one session must come from the same thread.
    """

    def __init__(
        self,
        credentials: BusCredentials,
        *,
        connection_factory: Callable[[pika.URLParameters], Any] = pika.BlockingConnection,
        poll_interval: float = 1.0,
    ) -> None:
        self.credentials = credentials
        self.poll_interval = poll_interval
        self._connection_factory = connection_factory
        self._stopping = threading.Event()
        self._connection: Optional[Any] = None
        self._channel: Optional[Any] = None
        self.queue_name: Optional[str] = None

    @property
    def connected(self) -> bool:
        return self._connection is not None and self._connection.is_open

    # ------------------------------------------------------------------ #
    def connect(self) -> None:
        creds = self.credentials
        if not creds.user or not creds.host:
            err = MissingCredentials("Error connecting to the AMQP server: user or FQDN are missing")
            logger.error(str(err))
            raise err

        self._stopping.clear()
        try:
            self._connection = self._connection_factory(pika.URLParameters(build_url(creds)))
        except _SETUP_ERRORS as exc:
            logger.error("Error connecting to the AMQP server: %s", exc)
            raise ConnectFailure("Error connecting to the AMQP server", cause=exc) from exc
        logger.info("Connected to AMQP at %s", creds.host)

        try:
            self._subscribe()
        except ConnectFailure:
            self.close()
            raise

    def _subscribe(self) -> None:
        try:
            self._channel = self._connection.channel()
            self._channel.exchange_declare(
                exchange=EXCHANGE_NAME, exchange_type=EXCHANGE_TYPE, passive=True, durable=True
            )
        except _SETUP_ERRORS as exc:
            logger.error("Error creating AMQP channel: %s", exc)
            raise ConnectFailure("Error creating AMQP channel", cause=exc) from exc
        logger.info("Created AMQP channel")

        try:
            result = self._channel.queue_declare(queue="", durable=False, exclusive=True, auto_delete=True)
            self.queue_name = result.method.queue
        except _SETUP_ERRORS as exc:
            logger.error("Error setting up queue: %s", exc)
            raise ConnectFailure("Error setting up queue", cause=exc) from exc
        logger.info("Default queue declared")

        try:
            self._channel.queue_bind(queue=self.queue_name, exchange=EXCHANGE_NAME, routing_key=BINDING_KEY)
        except _SETUP_ERRORS as exc:
            logger.error("Error binding queue '%s' to the channel: %s", self.queue_name, exc)
            raise ConnectFailure(f"Error binding queue '{self.queue_name}'", cause=exc) from exc
        logger.info("Bound queue '%s' to the channel", self.queue_name)

    # ------------------------------------------------------------------ #
    def consume(self) -> Iterator[Event]:
        """Yield deliveries until :meth:`stop` is called or the connection drops."""
        if self._channel is None or self.queue_name is None:
            raise ConnectFailure("consume() called before connect()")

        logger.debug("Listening to the events...")
        deliveries = self._channel.consume(
            self.queue_name, auto_ack=True, inactivity_timeout=self.poll_interval
        )
        try:
            for method, _properties, body in deliveries:
                if method is None:
                    if self._stopping.is_set():
                        logger.debug("Stop requested, leaving the delivery stream")
                        return
                    continue
                yield Event.from_delivery(method.routing_key, body)
        except AMQPError as exc:
            logger.error("Lost connection to the AMQP server: %s", exc)
            raise ConnectionLost("Lost connection to the AMQP server", cause=exc) from exc

    def keepalive(self) -> None:
        """
        Let pika answer heartbeats while no delivery is being read.

        Same thread rules as :meth:`consume`; a no-op when not connected.
        """
        if self._connection is None or not self._connection.is_open:
            return
        try:
            self._connection.process_data_events(time_limit=0)
        except AMQPError as exc:
            logger.error("Lost connection to the AMQP server: %s", exc)
            raise ConnectionLost("Lost connection to the AMQP server", cause=exc) from exc

    def stop(self) -> None:
        """Ask :meth:`consume` to return at its next idle poll. Thread safe."""
        self._stopping.set()

    def close(self) -> None:
        if self._channel is not None and self._channel.is_open:
            try:
                self._channel.cancel()
            except AMQPError as exc:
                logger.debug("Error cancelling AMQP consumer: %s", exc)
        if self._connection is not None and self._connection.is_open:
            try:
                self._connection.close()
            except AMQPError as exc:
                logger.debug("Error closing AMQP connection: %s", exc)
        self._connection = None
        self._channel = None
        self.queue_name = None
