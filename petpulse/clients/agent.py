"""Alert routing from the video workers to the escalation engine.

Routing policy, evaluated once per successfully analyzed clip:
    - severity_level == critical: POST ``/alert/critical`` with severity
      "critical", carrying critical indicators and recommended actions
    - is_unusual: POST ``/alert`` with the legacy severity string shifted one
      step up from the analysis level
    - otherwise: no alert

Architecture Pattern:
    - Async HTTP client (httpx)
    - Timeout handling (10s max)
    - Graceful degradation: delivery failures are logged and counted, never
      raised, so they cannot affect the video's own status
"""

import uuid
from datetime import datetime, timezone
from typing import Any

import httpx

from petpulse import metrics
from petpulse.config import get_agent_service_url
from petpulse.models import AlertType, SeverityLevel
from petpulse.schemas.analysis import AnalysisResult
from petpulse.utils.logging import get_logger

log = get_logger(__name__)

# Analysis severity level -> legacy severity string
LEGACY_SEVERITY = {
    "info": "low",
    "low": "medium",
    "medium": "high",
    "high": "high",
}


def map_legacy_severity(severity_level: str) -> str:
    """One-step up-shift of an analysis level; unknown levels map to medium."""
    return LEGACY_SEVERITY.get(severity_level.lower(), "medium")


def build_alert_request(
    video_id: uuid.UUID, pet_id: int, result: AnalysisResult
) -> tuple[str, dict[str, Any]] | None:
    """Decide whether a clip warrants an alert and build it.

    Returns:
        ``(path, payload)`` to POST, or None if no alert is raised.
    """
    description = result.summary_description or ""
    level = result.severity_level.value
    base: dict[str, Any] = {
        "alert_id": str(uuid.uuid4()),
        "pet_id": pet_id,
        "alert_type": AlertType.UNUSUAL_BEHAVIOR.value,
        "message": description,
        "video_id": str(video_id),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    if result.severity_level is SeverityLevel.CRITICAL:
        indicators = result.critical_indicators or []
        actions = result.recommended_actions or []
        payload = {
            **base,
            "severity": "critical",
            "title": "CRITICAL ALERT: Immediate Attention Required",
            "state": "critical",
            "severity_level": level,
            "critical_indicators": indicators,
            "recommended_actions": actions,
            "context": {
                "mood": result.summary_mood,
                "description": description,
                "severity_level": level,
                "critical_indicators": indicators,
                "recommended_actions": actions,
            },
        }
        return "/alert/critical", payload

    if result.is_unusual:
        payload = {
            **base,
            "severity": map_legacy_severity(result.reported_severity or level),
            "title": "Unusual Behavior Detected",
            "state": "alerting",
            "severity_level": level,
            "context": {
                "mood": result.summary_mood,
                "description": description,
                "severity_level": level,
            },
        }
        return "/alert", payload

    return None


class AlertRouter:
    """Posts alert events to the escalation engine's HTTP intake.

    Args:
        base_url: Engine base URL (default AGENT_SERVICE_URL).
        client: Shared httpx client; one is created per call when omitted.
    """

    def __init__(self, base_url: str | None = None, client: httpx.AsyncClient | None = None):
        self.base_url = (base_url or get_agent_service_url()).rstrip("/")
        self._client = client

    async def route(self, video_id: uuid.UUID, pet_id: int, result: AnalysisResult) -> bool:
        """Send the alert for one analyzed clip, if any.

        Returns:
            True if an alert was accepted by the engine, False if none was
            warranted or delivery failed.
        """
        request = build_alert_request(video_id, pet_id, result)
        if request is None:
            return False

        path, payload = request
        url = f"{self.base_url}{path}"
        log.info(
            "alert_webhook_sending",
            video_id=str(video_id),
            pet_id=pet_id,
            path=path,
            severity_level=payload["severity_level"],
        )

        try:
            if self._client is not None:
                response = await self._client.post(url, json=payload, timeout=10.0)
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.post(url, json=payload, timeout=10.0)
            response.raise_for_status()
        except httpx.TimeoutException:
            metrics.alert_webhook_failures_total.inc()
            log.error("alert_webhook_timeout", video_id=str(video_id), url=url)
            return False
        except httpx.HTTPStatusError as e:
            metrics.alert_webhook_failures_total.inc()
            log.error(
                "alert_webhook_http_error",
                video_id=str(video_id),
                status_code=e.response.status_code,
                response=e.response.text[:500],
            )
            return False
        except httpx.HTTPError as e:
            metrics.alert_webhook_failures_total.inc()
            log.error("alert_webhook_failed", video_id=str(video_id), error=str(e))
            return False

        log.info("alert_webhook_sent", video_id=str(video_id), path=path)
        return True
