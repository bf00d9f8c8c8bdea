"""Typed async client for the health API.

Every call goes through ``_request``, which maps transport failures to
``HealthApiError(status_code=None)`` and non-2xx responses to
``HealthApiError(<server error message>, status)``.
"""

from __future__ import annotations

import logging
from typing import Any, Sequence

import httpx

from healthsync.client.config import ClientSettings
from healthsync.client.errors import HealthApiError
from healthsync.models.health import IngestResult, RawSamplePage, SampleIn
from healthsync.models.write_intents import (
    PendingPage,
    UpsertResult,
    WriteIntent,
    WriteIntentAck,
    WriteIntentPayload,
)

logger = logging.getLogger("healthsync.client.api")


def _error_message(response: httpx.Response) -> str:
    try:
        parsed = response.json()
    except ValueError:
        return f"Request failed with status {response.status_code}"
    if isinstance(parsed, dict) and isinstance(parsed.get("error"), str):
        return parsed["error"]
    return f"Request failed with status {response.status_code}"


class HealthApiClient:
    """Bearer-authenticated JSON client.

    Usage::

        api = HealthApiClient(ClientSettings())
        result = await api.ingest("device-abc", samples)
    """

    def __init__(
        self,
        settings: ClientSettings,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            settings:    Base URL, token and timeout.
            http_client: Optional pre-configured httpx client (for testing).
        """
        self._settings = settings
        self._base_url = settings.base_url.rstrip("/")
        self._http_client = http_client

    def _build_headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self._settings.api_token}"}

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        body: Any = None,
    ) -> Any:
        url = f"{self._base_url}{path}"
        headers = self._build_headers()
        if params:
            params = {k: v for k, v in params.items() if v is not None}

        try:
            if self._http_client:
                response = await self._http_client.request(
                    method, url, params=params, json=body, headers=headers
                )
            else:
                async with httpx.AsyncClient(timeout=self._settings.timeout_seconds) as client:
                    response = await client.request(
                        method, url, params=params, json=body, headers=headers
                    )
        except httpx.TransportError as exc:
            raise HealthApiError(str(exc) or "Network request failed", None) from exc

        if not response.is_success:
            message = _error_message(response)
            logger.debug("%s %s -> %d: %s", method, path, response.status_code, message)
            raise HealthApiError(message, response.status_code)

        try:
            return response.json()
        except ValueError:
            raise HealthApiError("Response was not valid JSON", response.status_code) from None

    # ---------- Samples ----------

    async def ingest(self, device_id: str, samples: Sequence[SampleIn]) -> IngestResult:
        body = {"deviceId": device_id, "samples": [s.to_wire() for s in samples]}
        return IngestResult.model_validate(await self._request("POST", "/health/ingest", body=body))

    async def get_daily(self, from_day: str, to_day: str) -> list[dict]:
        data = await self._request("GET", "/health/daily", params={"from": from_day, "to": to_day})
        return data["items"]

    async def get_raw(
        self,
        metric: str,
        from_ms: int,
        to_ms: int,
        limit: int | None = None,
        cursor: str | None = None,
    ) -> RawSamplePage:
        params = {"metric": metric, "fromMs": from_ms, "toMs": to_ms, "limit": limit, "cursor": cursor}
        return RawSamplePage.model_validate(await self._request("GET", "/health/raw", params=params))

    # ---------- Summaries ----------

    async def daily_summary(self, day: str, timezone: str | None = None) -> dict:
        return await self._request(
            "GET", "/health/summary/daily", params={"day": day, "timezone": timezone}
        )

    async def range_summary(self, from_day: str, to_day: str, timezone: str | None = None) -> dict:
        return await self._request(
            "GET",
            "/health/summary/range",
            params={"from": from_day, "to": to_day, "timezone": timezone},
        )

    async def yesterday_summary(self, timezone: str | None = None) -> dict:
        return await self._request("GET", "/health/summary/yesterday", params={"timezone": timezone})

    async def query(self, structured_query: dict) -> dict:
        return await self._request("POST", "/health/query", body=structured_query)

    async def capabilities(self) -> dict:
        return await self._request("GET", "/health/capabilities")

    # ---------- Write intents ----------

    async def upsert_write_intent(self, payload: WriteIntentPayload) -> UpsertResult:
        envelope = await self._request("POST", "/health/write-intents", body=payload.to_wire())
        return UpsertResult.model_validate(envelope["data"])

    async def list_pending_write_intents(self, limit: int, cursor: str | None = None) -> PendingPage:
        envelope = await self._request(
            "GET", "/health/write-intents/pending", params={"limit": limit, "cursor": cursor}
        )
        return PendingPage.model_validate(envelope["data"])

    async def ack_write_intent(self, ack: WriteIntentAck) -> WriteIntent:
        envelope = await self._request("POST", "/health/write-intents/ack", body=ack.to_wire())
        return WriteIntent.model_validate(envelope["data"]["intent"])
