"""Tests for alert routing from video workers to the escalation engine."""

import json
import uuid

import httpx
import pytest

from petpulse import metrics
from petpulse.clients.agent import AlertRouter, build_alert_request, map_legacy_severity
from petpulse.schemas.analysis import AnalysisResult

VIDEO_ID = uuid.UUID("00000000-0000-0000-0000-000000000042")


def _result(**fields) -> AnalysisResult:
    return AnalysisResult.model_validate(
        {"summary_description": "Scratching at the door", "summary_mood": "Anxious", **fields}
    )


class TestLegacySeverity:
    @pytest.mark.parametrize(
        ("level", "expected"),
        [("info", "low"), ("low", "medium"), ("medium", "high"), ("high", "high"), ("odd", "medium")],
    )
    def test_mapping(self, level, expected):
        assert map_legacy_severity(level) == expected


class TestBuildAlertRequest:
    def test_normal_clip_raises_no_alert(self):
        assert build_alert_request(VIDEO_ID, 7, _result(is_unusual=False)) is None

    def test_unusual_clip(self):
        path, payload = build_alert_request(
            VIDEO_ID, 7, _result(is_unusual=True, severity_level="low")
        )

        assert path == "/alert"
        assert payload["alert_type"] == "unusual_behavior"
        assert payload["severity"] == "medium"
        assert payload["video_id"] == str(VIDEO_ID)
        assert payload["context"]["severity_level"] == "low"
        assert payload["message"] == "Scratching at the door"

    def test_info_level_maps_to_low_severity(self):
        result = _result(is_unusual=True, severity_level="Info")
        path, payload = build_alert_request(VIDEO_ID, 7, result)

        assert path == "/alert"
        assert payload["severity"] == "low"
        assert payload["severity_level"] == "low"

    def test_critical_clip_goes_to_critical_path(self):
        path, payload = build_alert_request(
            VIDEO_ID,
            7,
            _result(
                is_unusual=True,
                severity_level="critical",
                critical_indicators=["seizure"],
                recommended_actions=["call vet"],
            ),
        )

        assert path == "/alert/critical"
        assert payload["severity"] == "critical"
        assert payload["critical_indicators"] == ["seizure"]
        assert payload["context"]["recommended_actions"] == ["call vet"]

    def test_critical_without_unusual_flag_still_alerts(self):
        path, _ = build_alert_request(VIDEO_ID, 7, _result(severity_level="critical"))
        assert path == "/alert/critical"


class TestAlertRouter:
    @pytest.mark.asyncio
    async def test_posts_to_engine(self):
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(202, json={"status": "queued"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            router = AlertRouter("http://agent:3002/", client)
            assert await router.route(VIDEO_ID, 7, _result(is_unusual=True)) is True

        assert str(requests[0].url) == "http://agent:3002/alert"
        assert json.loads(requests[0].content)["pet_id"] == 7

    @pytest.mark.asyncio
    async def test_no_request_for_normal_clip(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            router = AlertRouter("http://agent:3002", client)
            assert await router.route(VIDEO_ID, 7, _result()) is False

    @pytest.mark.asyncio
    async def test_http_error_logged_not_raised(self):
        before = metrics.REGISTRY.get_sample_value("petpulse_alert_webhook_failures_total")

        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="boom")

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            router = AlertRouter("http://agent:3002", client)
            assert await router.route(VIDEO_ID, 7, _result(is_unusual=True)) is False

        after = metrics.REGISTRY.get_sample_value("petpulse_alert_webhook_failures_total")
        assert after == before + 1

    @pytest.mark.asyncio
    async def test_timeout_logged_not_raised(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            router = AlertRouter("http://agent:3002", client)
            assert await router.route(VIDEO_ID, 7, _result(is_unusual=True)) is False
