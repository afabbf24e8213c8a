from __future__ import annotations

import logging
import random
import time
from typing import Any

import requests

from ictbot.data.candles import Candle, parse_klines, resolution_to_bybit

LOGGER = logging.getLogger(__name__)


class BybitAPIError(RuntimeError):
    """Non-retryable Bybit API error."""


class RetryableBybitAPIError(BybitAPIError):
    """Retryable API/network error."""


def _parse_retry_after(headers: Any) -> float | None:
    value = headers.get("Retry-After")
    if not value:
        return None
    try:
        parsed = float(str(value).strip())
    except ValueError:
        return None
    if parsed < 0:
        return None
    return parsed


class BybitClient:
    """
    Read-only client for the Bybit v5 public market endpoints.

    Only klines are needed; no authentication is involved.
    """

    def __init__(
        self,
        base_url: str,
        *,
        category: str = "linear",
        timeout_seconds: int = 10,
        request_max_attempts: int = 3,
        backoff_base_seconds: float = 0.5,
        backoff_max_seconds: float = 10.0,
        session: requests.Session | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.category = category
        self.timeout_seconds = timeout_seconds
        self.request_max_attempts = max(1, int(request_max_attempts))
        self.backoff_base_seconds = max(0.0, float(backoff_base_seconds))
        self.backoff_max_seconds = max(self.backoff_base_seconds, float(backoff_max_seconds))
        self.session = session or requests.Session()
        self.total_requests = 0
        self.total_retries = 0

    def _sleep_retry(self, *, endpoint: str, attempt: int, reason: str, retry_after: float | None = None) -> None:
        if retry_after is not None:
            sleep_seconds = max(0.0, retry_after)
        else:
            exponential = min(
                self.backoff_max_seconds,
                self.backoff_base_seconds * (2 ** max(0, attempt - 1)),
            )
            jitter = random.uniform(0.0, max(0.01, exponential * 0.2))
            sleep_seconds = min(self.backoff_max_seconds, exponential + jitter)
        self.total_retries += 1
        LOGGER.warning(
            "Retrying Bybit call endpoint=%s attempt=%d/%d sleep=%.2fs reason=%s",
            endpoint,
            attempt,
            self.request_max_attempts,
            sleep_seconds,
            reason,
        )
        time.sleep(sleep_seconds)

    def _get(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        for attempt in range(1, self.request_max_attempts + 1):
            self.total_requests += 1
            try:
                response = self.session.get(url, params=params, timeout=self.timeout_seconds)
            except requests.RequestException as exc:
                if attempt >= self.request_max_attempts:
                    raise RetryableBybitAPIError(f"Network error on {path}: {exc}") from exc
                self._sleep_retry(endpoint=path, attempt=attempt, reason=f"network:{type(exc).__name__}")
                continue

            if response.status_code == 429 or response.status_code >= 500:
                if attempt >= self.request_max_attempts:
                    raise RetryableBybitAPIError(f"Retryable error on {path}: HTTP {response.status_code}")
                self._sleep_retry(
                    endpoint=path,
                    attempt=attempt,
                    reason=f"http_{response.status_code}",
                    retry_after=_parse_retry_after(response.headers),
                )
                continue

            if response.status_code >= 400:
                raise BybitAPIError(f"HTTP {response.status_code} on {path}: {response.text}")

            payload = response.json()
            ret_code = int(payload.get("retCode", 0))
            if ret_code != 0:
                raise BybitAPIError(f"Bybit retCode={ret_code} on {path}: {payload.get('retMsg')}")
            return payload.get("result") or {}
        raise RetryableBybitAPIError(f"Exhausted retries on {path}")

    def get_klines(self, symbol: str, timeframe: str, limit: int = 200) -> list[Candle]:
        result = self._get(
            "/v5/market/kline",
            {
                "category": self.category,
                "symbol": symbol,
                "interval": resolution_to_bybit(timeframe),
                "limit": max(1, min(1000, int(limit))),
            },
        )
        return parse_klines(result.get("list") or [], timeframe)
