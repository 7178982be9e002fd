"""Video-understanding client built on the Gemini File API.

Flow for one clip:
    1. Upload the local file (``genai.upload_file``)
    2. Poll the file state every ANALYSIS_POLL_INTERVAL_SECONDS until ACTIVE,
       failing on FAILED or after ANALYSIS_MAX_POLLS polls
    3. Ask the model for a structured-JSON behavior analysis of the clip
    4. Strip any markdown code fence and validate into AnalysisResult
    5. Delete the uploaded file (best effort; the service expires it anyway)

The same client also exposes ``generate_text`` for short message synthesis
(quick actions), so the engine and the workers share one dependency type.

Architecture Pattern:
    Client owns its bounded poll loop; callers see a single ``analyze`` call
    that either returns a result or raises AnalysisError. The google SDK's
    file calls are synchronous and run via asyncio.to_thread.

Usage:
    from petpulse.clients.gemini import AnalysisClient

    client = AnalysisClient()
    result = await client.analyze(Path("/tmp/clip.mp4"))
"""

import asyncio
import json
from pathlib import Path
from typing import Any

import google.generativeai as genai
from pydantic import ValidationError

from petpulse import metrics
from petpulse.config import (
    get_analysis_max_polls,
    get_analysis_poll_interval,
    get_gemini_api_key,
    get_gemini_model,
)
from petpulse.exceptions import AnalysisError, ConfigurationError
from petpulse.schemas.analysis import AnalysisResult
from petpulse.utils.logging import get_logger

log = get_logger(__name__)

ANALYSIS_PROMPT = """Analyze this video of a pet. Precise behavior analysis.
Return a JSON object (without markdown code blocks) with the following structure:
{
    "activities": [
        {
            "activity": "string (Activity name e.g., Walking, Sleeping)",
            "mood": "string (Mood e.g., Energetic, Relaxed)",
            "description": "string (Detailed description of this specific segment)",
            "starttime": "string (HH:MM:SS)",
            "endtime": "string (HH:MM:SS)",
            "duration": "string (e.g. 5s)"
        }
    ],
    "is_unusual": boolean,
    "summary_mood": "string (Overall mood)",
    "summary_description": "string (Overall description)",
    "severity_level": "low | medium | high | critical",
    "critical_indicators": ["string"],
    "recommended_actions": ["string"]
}
Identify if there is any unusual or concerning behavior (e.g., limping, aggression,
extreme lethargy) and set "is_unusual" to true. Use "critical" severity only for
signs of injury, seizure, choking, collapse or other emergencies, and list the
observed signs in "critical_indicators"."""


def strip_code_fence(text: str) -> str:
    """Remove a surrounding ```json ... ``` fence, if any."""
    cleaned = text.strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[len("```json") :]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def parse_analysis_text(text: str) -> AnalysisResult:
    """Parse the model's text response into an AnalysisResult.

    Raises:
        AnalysisError: If the text is not a JSON object of the expected shape.
    """
    cleaned = strip_code_fence(text)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise AnalysisError(f"Failed to parse analysis JSON: {e} - Text: {cleaned[:200]}") from e
    if not isinstance(data, dict):
        raise AnalysisError(f"Analysis JSON is not an object: {type(data).__name__}")
    try:
        return AnalysisResult.model_validate(data)
    except ValidationError as e:
        raise AnalysisError(f"Analysis JSON has unexpected shape: {e}") from e


def _file_state(video_file: Any) -> str:
    state = getattr(video_file, "state", None)
    return getattr(state, "name", str(state) if state is not None else "UNKNOWN")


class AnalysisClient:
    """Gemini-backed behavior analysis and text generation.

    Args:
        api_key: Overrides GEMINI_API_KEY.
        model_name: Overrides GEMINI_MODEL.
        poll_interval: Seconds between file-state polls.
        max_polls: Poll ceiling before the analysis fails.

    Raises:
        ConfigurationError: If no API key is available.
    """

    def __init__(
        self,
        api_key: str | None = None,
        model_name: str | None = None,
        poll_interval: float | None = None,
        max_polls: int | None = None,
    ) -> None:
        if api_key is None:
            try:
                api_key = get_gemini_api_key()
            except ValueError as e:
                raise ConfigurationError(str(e)) from e

        genai.configure(api_key=api_key)
        self.model_name = model_name or get_gemini_model()
        self.model = genai.GenerativeModel(self.model_name)
        self.poll_interval = (
            poll_interval if poll_interval is not None else get_analysis_poll_interval()
        )
        self.max_polls = max_polls if max_polls is not None else get_analysis_max_polls()

    async def analyze(self, video_path: Path) -> AnalysisResult:
        """Upload ``video_path``, wait until it is ready and return its analysis.

        Raises:
            AnalysisError: On upload failure, FAILED state, poll timeout,
                blocked/empty response or unparseable output.
        """
        try:
            video_file = await asyncio.to_thread(genai.upload_file, path=str(video_path))
        except Exception as e:
            metrics.gemini_api_errors_total.inc()
            raise AnalysisError(f"Upload failed: {e}") from e

        log.info("analysis_file_uploaded", path=str(video_path), file_name=video_file.name)

        try:
            video_file = await self._wait_until_active(video_file)
            text = await self._generate([ANALYSIS_PROMPT, video_file])
        finally:
            await self._delete_quietly(video_file.name)

        result = parse_analysis_text(text)
        log.info(
            "analysis_completed",
            path=str(video_path),
            is_unusual=result.is_unusual,
            severity_level=result.severity_level.value,
            activity_count=len(result.activities),
        )
        return result

    async def generate_text(self, prompt: str) -> str:
        """Generate free text for ``prompt``.

        Raises:
            AnalysisError: If the call fails or the response is empty.
        """
        return await self._generate(prompt)

    async def _wait_until_active(self, video_file: Any) -> Any:
        for attempt in range(self.max_polls):
            state = _file_state(video_file)
            if state == "ACTIVE":
                return video_file
            if state == "FAILED":
                metrics.gemini_api_errors_total.inc()
                raise AnalysisError("Video processing failed by analysis service")

            log.debug("analysis_file_processing", state=state, poll=attempt + 1)
            await asyncio.sleep(self.poll_interval)
            try:
                video_file = await asyncio.to_thread(genai.get_file, video_file.name)
            except Exception as e:
                metrics.gemini_api_errors_total.inc()
                raise AnalysisError(f"File state poll failed: {e}") from e

        metrics.gemini_api_errors_total.inc()
        raise AnalysisError(f"Timeout waiting for video processing after {self.max_polls} polls")

    async def _generate(self, contents: Any) -> str:
        try:
            response = await self.model.generate_content_async(contents)
        except Exception as e:
            metrics.gemini_api_errors_total.inc()
            raise AnalysisError(f"Generate request failed: {e}") from e

        if not response.candidates or not response.candidates[0].content.parts:
            metrics.gemini_api_errors_total.inc()
            finish_reason = (
                response.candidates[0].finish_reason if response.candidates else "unknown"
            )
            raise AnalysisError(f"Response blocked or empty (finish_reason: {finish_reason})")

        usage = getattr(response, "usage_metadata", None)
        if usage is not None:
            metrics.record_token_usage(
                getattr(usage, "prompt_token_count", 0) or 0,
                getattr(usage, "candidates_token_count", 0) or 0,
            )

        return response.text

    async def _delete_quietly(self, file_name: str) -> None:
        try:
            await asyncio.to_thread(genai.delete_file, file_name)
        except Exception as e:
            # Uploaded files expire on their own after 48h
            log.warning("analysis_file_delete_failed", file_name=file_name, error=str(e))
