"""
Downstream sink forwarder for the event pipeline.

Posts each normalized record to the sink endpoint registered for its event
name. The sink upserts by ``id``, so redelivered logs overwrite rather than
duplicate. Delivery is one best-effort attempt: failures are classified,
logged, and returned in the ack; nothing is retried or buffered here.

Usage:
    forwarder = Forwarder()
    ack = await forwarder.forward(record)
    await forwarder.close()
"""

from __future__ import annotations

import asyncio

import aiohttp

from config.loader import get_config
from ingest_logging.logger_manager import setup_module_logger
from shared.constants import DEFAULT_FORWARD_TIMEOUT_SECONDS
from shared.serialization_utils import dumps
from shared.types import ForwardAck, ForwardFailure, ForwardStatus, NormalizedRecord


class Forwarder:
    """Async HTTP forwarder with a static event-name -> endpoint table."""

    def __init__(self) -> None:
        cfg = get_config()
        sink_cfg = cfg.get_sink_config()
        timing_cfg = cfg.get_timing_config().get("forwarder", {})

        self._base_url: str = sink_cfg.get("base_url", "").rstrip("/")
        self._endpoints: dict[str, str] = dict(sink_cfg.get("endpoints", {}))
        self._timeout: float = timing_cfg.get(
            "request_timeout_seconds", DEFAULT_FORWARD_TIMEOUT_SECONDS
        )

        # Lazy-init aiohttp session
        self._session: aiohttp.ClientSession | None = None

        self._logger = setup_module_logger(
            "forwarder", "forwarder.log", module_folder="Forwarder_Logs"
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def endpoint_for(self, event_name: str) -> str | None:
        path = self._endpoints.get(event_name)
        if path is None:
            return None
        return f"{self._base_url}/{path.lstrip('/')}"

    async def forward(self, record: NormalizedRecord) -> ForwardAck:
        """
        Deliver one record. Never raises for delivery problems; the outcome
        is in the returned ``ForwardAck``.
        """
        url = self.endpoint_for(record.event_name)
        if url is None:
            self._logger.info(
                "No sink endpoint for event %s (record %s), skipping",
                record.event_name,
                record.id,
            )
            return ForwardAck(status=ForwardStatus.SKIPPED, record_id=record.id)

        headers = {"Content-Type": "application/json", "Idempotency-Key": record.id}
        body = dumps(record.to_dict())
        session = await self._ensure_session()
        timeout = aiohttp.ClientTimeout(total=self._timeout)

        try:
            async with session.post(url, data=body, headers=headers, timeout=timeout) as resp:
                if 200 <= resp.status < 300:
                    self._logger.info(
                        "Forwarded %s record %s (tx=%s index=%d) -> %s [%d]",
                        record.event_name,
                        record.id,
                        record.transaction_hash,
                        record.log_index,
                        url,
                        resp.status,
                    )
                    return ForwardAck(
                        status=ForwardStatus.DELIVERED,
                        record_id=record.id,
                        endpoint=url,
                        http_status=resp.status,
                    )
                detail = (await resp.text(errors="replace"))[:500]
                failure = (
                    ForwardFailure.CLIENT_ERROR
                    if 400 <= resp.status < 500
                    else ForwardFailure.SERVER_ERROR
                )
                return self._failed(record, url, failure, f"HTTP {resp.status}: {detail}", resp.status)
        except asyncio.TimeoutError:
            return self._failed(
                record, url, ForwardFailure.TIMEOUT, f"timed out after {self._timeout}s"
            )
        except aiohttp.ClientError as exc:
            return self._failed(record, url, ForwardFailure.TRANSPORT, str(exc) or type(exc).__name__)

    async def close(self) -> None:
        """Close the underlying aiohttp session."""
        if self._session is not None and not self._session.closed:
            await self._session.close()
            self._session = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _failed(
        self,
        record: NormalizedRecord,
        url: str,
        failure: ForwardFailure,
        error: str,
        http_status: int | None = None,
    ) -> ForwardAck:
        self._logger.error(
            "Forward failed (%s) for %s record %s (tx=%s index=%d) -> %s: %s",
            failure.value,
            record.event_name,
            record.id,
            record.transaction_hash,
            record.log_index,
            url,
            error,
        )
        return ForwardAck(
            status=ForwardStatus.FAILED,
            record_id=record.id,
            endpoint=url,
            http_status=http_status,
            failure=failure,
            error=error,
        )

    async def _ensure_session(self) -> aiohttp.ClientSession:
        """Lazy-init aiohttp session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session
