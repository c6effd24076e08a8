# artifact_gatherer/infra/error_sink.py
# Fire-and-forget reporting of non-fatal failures. A sink never raises into the
# caller and never influences control flow.
from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Protocol, Set

import aio_pika
import orjson
from aio_pika import DeliveryMode, ExchangeType

from artifact_gatherer.config import settings
from artifact_gatherer.models.events import ErrorReport

logger = logging.getLogger(__name__)


class ErrorSink(Protocol):
    def report(self, report: ErrorReport) -> None: ...


class NullErrorSink:
    def report(self, report: ErrorReport) -> None:
        return None


class LoggingErrorSink:
    _LEVELS = {"info": logging.INFO, "warning": logging.WARNING, "error": logging.ERROR, "fatal": logging.CRITICAL}

    def report(self, report: ErrorReport) -> None:
        logger.log(
            self._LEVELS.get(report.severity, logging.WARNING),
            "[%s] %s%s",
            report.component,
            report.message,
            f" ({report.url})" if report.url else "",
        )


def routing_key(org: str, event: str, version: str = "v1") -> str:
    return f"{org}.gatherer.{event}.{version}"


class RabbitErrorSink:
    """
    Publishes reports as persistent JSON on <org>.gatherer.error.v1.
    Reuses one robust connection + channel + exchange; publishes run as
    background tasks so report() stays synchronous.
    """
    def __init__(self, url: Optional[str] = None, exchange_name: Optional[str] = None, org: Optional[str] = None):
        self.url = url or settings.RABBITMQ_URL
        self.exchange_name = exchange_name or settings.RABBITMQ_EXCHANGE
        self.org = org or settings.EVENTS_ORG
        self._conn: Optional[aio_pika.abc.AbstractRobustConnection] = None
        self._channel: Optional[aio_pika.abc.AbstractChannel] = None
        self._exchange: Optional[aio_pika.abc.AbstractExchange] = None
        self._lock = asyncio.Lock()
        self._pending: Set[asyncio.Task] = set()

    async def _ensure(self) -> None:
        if self._exchange:
            return
        async with self._lock:
            if self._exchange:
                return
            logger.info("Rabbit: connecting...")
            self._conn = await aio_pika.connect_robust(self.url)
            self._channel = await self._conn.channel()
            self._exchange = await self._channel.declare_exchange(
                self.exchange_name, ExchangeType.TOPIC, durable=True
            )
            logger.info("Rabbit: connected and exchange declared", extra={"exchange": self.exchange_name})

    async def _publish(self, report: ErrorReport) -> None:
        await self._ensure()
        assert self._exchange is not None
        msg = aio_pika.Message(
            body=orjson.dumps({"service": settings.SERVICE_NAME, **report.model_dump()}),
            content_type="application/json",
            delivery_mode=DeliveryMode.PERSISTENT,
        )
        await self._exchange.publish(msg, routing_key=routing_key(self.org, "error"))

    def _done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning("Rabbit: error report not published: %s", task.exception())

    def report(self, report: ErrorReport) -> None:
        try:
            task = asyncio.get_running_loop().create_task(self._publish(report))
        except RuntimeError:
            logger.warning("Rabbit: no running loop, dropping report from %s", report.component)
            return
        self._pending.add(task)
        task.add_done_callback(self._done)

    async def close(self) -> None:
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        try:
            if self._channel and not self._channel.is_closed:
                await self._channel.close()
        finally:
            if self._conn and not self._conn.is_closed:
                await self._conn.close()


class CollectingErrorSink:
    """Keeps reports in memory; the runner wraps the configured sink with one."""
    def __init__(self, inner: Optional[ErrorSink] = None):
        self.inner = inner
        self.reports: List[ErrorReport] = []

    def report(self, report: ErrorReport) -> None:
        self.reports.append(report)
        if self.inner is not None:
            try:
                self.inner.report(report)
            except Exception:
                logger.exception("error sink raised; report kept locally")


def default_error_sink() -> ErrorSink:
    if settings.RABBITMQ_URL:
        return RabbitErrorSink()
    return LoggingErrorSink()
