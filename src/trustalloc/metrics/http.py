"""
HTTP Metrics Provider: reads collaborator data from the host service.

Uses httpx against a small REST surface exposed by the host:

    GET {base}/entities/{id}/profile            -> {isVerified, isActive, isAdmin}
    GET {base}/entities/{id}/kyc                -> {status, documentType, documentNumber}
    GET {base}/entities/{id}/behavior-metrics   -> BehaviorMetrics fields
    GET {base}/entities/{id}/readiness-metrics  -> ReadinessMetrics fields
    GET {base}/entities/{id}/guarantor-score    -> {guaranteeTrustScore}
    GET {base}/entities/{id}/last-activity      -> {lastActivityAt}
    PUT {base}/entities/{id}/last-activity      <- {lastActivityAt}

A 404 means "no data" and maps to None so trust computation falls back to
neutral defaults. Timeouts and 5xx responses are retried, then raised as
MetricsUnavailableError.

Configuration (pick one):
    1. Constructor: HttpMetricsProvider(base_url="https://host.internal/api")
    2. Env var:     TRUSTALLOC_METRICS_URL=https://host.internal/api
"""

from __future__ import annotations

import os
from datetime import datetime
from typing import Any

import httpx

from trustalloc.core.exceptions import ConfigurationError, MetricsUnavailableError
from trustalloc.core.logging import get_logger
from trustalloc.metrics.types import (
    BehaviorMetrics,
    KycRecord,
    ReadinessMetrics,
    parse_timestamp,
)
from trustalloc.resilience.retry import execute_with_retry

logger = get_logger("metrics.http")

METRICS_URL_ENV_VAR = "TRUSTALLOC_METRICS_URL"


class HttpMetricsProvider:
    """
    Collaborator interfaces served by the host over HTTP.

    Usage:
        provider = HttpMetricsProvider(base_url="https://host.internal/api")
        metrics = await provider.get_behavior_metrics("user-42")
        await provider.close()
    """

    def __init__(
        self,
        base_url: str | None = None,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
        retry_attempts: int = 3,
    ) -> None:
        """
        Args:
            base_url: Host API root. Falls back to TRUSTALLOC_METRICS_URL env var.
            http_client: Shared httpx client (for connection pooling or tests).
            timeout: Per-request timeout in seconds.
            retry_attempts: Attempts per call for transient failures.
        """
        raw_url = base_url or os.environ.get(METRICS_URL_ENV_VAR, "")
        if not raw_url:
            raise ConfigurationError(
                f"No metrics URL configured. Set {METRICS_URL_ENV_VAR} or pass base_url."
            )
        self._base_url = raw_url.rstrip("/")
        self._http_client = http_client
        self._owns_client = False
        self._timeout = timeout
        self._retry_attempts = retry_attempts

    async def _get_client(self) -> httpx.AsyncClient:
        """Lazy-init HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
            self._owns_client = True
        return self._http_client

    async def close(self) -> None:
        """Close owned HTTP client."""
        if self._owns_client and self._http_client:
            await self._http_client.aclose()
            self._http_client = None

    def _url(self, entity_id: str, resource: str) -> str:
        return f"{self._base_url}/entities/{entity_id}/{resource}"

    async def _request(
        self,
        method: str,
        url: str,
        payload: dict[str, Any] | None = None,
    ) -> dict[str, Any] | None:
        client = await self._get_client()
        response = await client.request(method, url, json=payload)

        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise MetricsUnavailableError(
                f"Metrics request failed with HTTP {response.status_code}",
                status_code=response.status_code,
                url=url,
            )
        if not response.content:
            return {}
        return response.json()

    async def _fetch(self, entity_id: str, resource: str) -> dict[str, Any] | None:
        url = self._url(entity_id, resource)
        try:
            return await execute_with_retry(
                self._request, "GET", url, attempts=self._retry_attempts
            )
        except httpx.TransportError as e:
            logger.error(f"Metrics endpoint unreachable: {url}: {e}")
            raise MetricsUnavailableError(f"Metrics endpoint unreachable: {e}", url=url) from e

    # ─── Identity ────────────────────────────────────────────────────

    async def get_kyc_status(self, entity_id: str) -> KycRecord | None:
        data = await self._fetch(entity_id, "kyc")
        return KycRecord.from_dict(data) if data else None

    async def is_verified(self, entity_id: str) -> bool:
        return await self._profile_flag(entity_id, "isVerified")

    async def is_active(self, entity_id: str) -> bool:
        return await self._profile_flag(entity_id, "isActive")

    async def is_admin(self, entity_id: str) -> bool:
        return await self._profile_flag(entity_id, "isAdmin")

    async def _profile_flag(self, entity_id: str, flag: str) -> bool:
        profile = await self._fetch(entity_id, "profile")
        return bool(profile and profile.get(flag))

    # ─── Behavior / readiness ────────────────────────────────────────

    async def get_behavior_metrics(self, entity_id: str) -> BehaviorMetrics | None:
        data = await self._fetch(entity_id, "behavior-metrics")
        return BehaviorMetrics.from_dict(data) if data else None

    async def get_readiness_metrics(self, entity_id: str) -> ReadinessMetrics | None:
        data = await self._fetch(entity_id, "readiness-metrics")
        return ReadinessMetrics.from_dict(data) if data else None

    # ─── Guarantors ──────────────────────────────────────────────────

    async def get_guarantee_trust_score(self, entity_id: str) -> float | None:
        data = await self._fetch(entity_id, "guarantor-score")
        if not data or data.get("guaranteeTrustScore") is None:
            return None
        return float(data["guaranteeTrustScore"])

    # ─── Activity clock ──────────────────────────────────────────────

    async def get_last_activity_at(self, entity_id: str) -> datetime | None:
        data = await self._fetch(entity_id, "last-activity")
        if not data or not data.get("lastActivityAt"):
            return None
        return parse_timestamp(data["lastActivityAt"])

    async def set_last_activity_at(self, entity_id: str, at: datetime) -> None:
        url = self._url(entity_id, "last-activity")
        try:
            await execute_with_retry(
                self._request,
                "PUT",
                url,
                {"lastActivityAt": at.isoformat()},
                attempts=self._retry_attempts,
            )
        except httpx.TransportError as e:
            raise MetricsUnavailableError(f"Metrics endpoint unreachable: {e}", url=url) from e
