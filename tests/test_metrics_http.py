"""
Tests for HttpMetricsProvider against a mocked host API.
"""

import json
from datetime import datetime, timezone

import httpx
import pytest

from trustalloc.core.exceptions import ConfigurationError, MetricsUnavailableError
from trustalloc.metrics.http import HttpMetricsProvider
from trustalloc.metrics.types import KycStatus

BASE_URL = "https://host.test/api"


def provider_for(handler) -> HttpMetricsProvider:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HttpMetricsProvider(base_url=BASE_URL, http_client=client, retry_attempts=2)


class TestHttpMetricsProvider:
    def test_requires_base_url(self, monkeypatch):
        monkeypatch.delenv("TRUSTALLOC_METRICS_URL", raising=False)
        with pytest.raises(ConfigurationError):
            HttpMetricsProvider()

    def test_base_url_from_env(self, monkeypatch):
        monkeypatch.setenv("TRUSTALLOC_METRICS_URL", "https://env.test/api/")
        provider = HttpMetricsProvider()
        assert provider._url("user-1", "kyc") == "https://env.test/api/entities/user-1/kyc"

    @pytest.mark.asyncio
    async def test_reads_camel_case_payloads(self):
        payloads = {
            "/api/entities/user-1/profile": {"isVerified": True, "isActive": True, "isAdmin": False},
            "/api/entities/user-1/kyc": {
                "status": "approved",
                "documentType": "passport",
                "documentNumber": "A1",
            },
            "/api/entities/user-1/behavior-metrics": {
                "totalTransactions": 10,
                "successfulTransactions": 9,
                "paymentPunctuality": 80,
                "disputeRate": 0.02,
            },
            "/api/entities/user-1/guarantor-score": {"guaranteeTrustScore": 72.5},
        }

        def handler(request: httpx.Request) -> httpx.Response:
            payload = payloads.get(request.url.path)
            if payload is None:
                return httpx.Response(404)
            return httpx.Response(200, json=payload)

        provider = provider_for(handler)

        assert await provider.is_verified("user-1") is True
        assert await provider.is_admin("user-1") is False
        kyc = await provider.get_kyc_status("user-1")
        assert kyc.status == KycStatus.APPROVED
        assert kyc.documents_complete
        behavior = await provider.get_behavior_metrics("user-1")
        assert behavior.success_rate == pytest.approx(90.0)
        assert behavior.dispute_rate == 0.02
        assert await provider.get_guarantee_trust_score("user-1") == 72.5

    @pytest.mark.asyncio
    async def test_not_found_means_no_data(self):
        provider = provider_for(lambda request: httpx.Response(404))

        assert await provider.get_kyc_status("user-1") is None
        assert await provider.get_readiness_metrics("user-1") is None
        assert await provider.get_guarantee_trust_score("user-1") is None
        assert await provider.get_last_activity_at("user-1") is None
        assert await provider.is_active("user-1") is False

    @pytest.mark.asyncio
    async def test_server_errors_retried_then_raised(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url.path)
            return httpx.Response(503)

        provider = provider_for(handler)

        with pytest.raises(MetricsUnavailableError) as exc_info:
            await provider.get_behavior_metrics("user-1")

        assert exc_info.value.status_code == 503
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_client_errors_not_retried(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url.path)
            return httpx.Response(400)

        provider = provider_for(handler)

        with pytest.raises(MetricsUnavailableError):
            await provider.get_behavior_metrics("user-1")
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_transport_error_wrapped(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        provider = provider_for(handler)

        with pytest.raises(MetricsUnavailableError):
            await provider.is_verified("user-1")

    @pytest.mark.asyncio
    async def test_last_activity_round_trip(self):
        stored = {}

        def handler(request: httpx.Request) -> httpx.Response:
            if request.method == "PUT":
                stored.update(json.loads(request.content))
                return httpx.Response(204)
            return httpx.Response(200, json=stored)

        provider = provider_for(handler)
        at = datetime(2025, 2, 1, 9, 30, tzinfo=timezone.utc)

        await provider.set_last_activity_at("user-1", at)

        assert stored == {"lastActivityAt": at.isoformat()}
        assert await provider.get_last_activity_at("user-1") == at

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "raw",
        ["2025-02-01T09:30:00Z", "2025-02-01T09:30:00", "2025-02-01T11:30:00+02:00"],
    )
    async def test_last_activity_is_always_utc_aware(self, raw):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"lastActivityAt": raw})

        provider = provider_for(handler)
        at = await provider.get_last_activity_at("user-1")

        assert at.tzinfo is not None
        assert at == datetime(2025, 2, 1, 9, 30, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_malformed_last_activity_raises(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"lastActivityAt": "last tuesday"})

        provider = provider_for(handler)

        with pytest.raises(MetricsUnavailableError):
            await provider.get_last_activity_at("user-1")
