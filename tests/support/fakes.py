"""In-memory fakes and seed helpers shared across the test suite."""

import uuid
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from petpulse.models import PetVideo, VideoStatus
from petpulse.schemas.analysis import AnalysisResult
from petpulse.schemas.jobs import JobMessage


async def add_video(
    session_factory: async_sessionmaker[AsyncSession],
    pet_id: int,
    *,
    status: VideoStatus = VideoStatus.PENDING,
    file_path: str = "gs://pet-videos/clips/clip.mp4",
    created_at: datetime | None = None,
    updated_at: datetime | None = None,
    retry_count: int = 0,
    **fields,
) -> PetVideo:
    """Insert a PetVideo row directly in ``status``."""
    now = datetime.now(timezone.utc)
    video = PetVideo(
        id=uuid.uuid4(),
        pet_id=pet_id,
        file_path=file_path,
        status=status,
        retry_count=retry_count,
        created_at=created_at or now,
        updated_at=updated_at or created_at or now,
        **fields,
    )
    async with session_factory() as db, db.begin():
        db.add(video)
    return video


class FakeQueue:
    """In-memory stand-in for JobQueue."""

    def __init__(self, fail: bool = False) -> None:
        self.pushed: list[tuple[str, JobMessage]] = []
        self.fail = fail
        self.depths: dict[str, int] = {}

    async def push(self, queue_name: str, message: JobMessage) -> None:
        if self.fail:
            raise ConnectionError("queue unavailable")
        self.pushed.append((queue_name, message))

    async def depth(self, queue_name: str) -> int:
        return self.depths.get(queue_name, 0)

    def messages(self, queue_name: str) -> list[JobMessage]:
        return [message for name, message in self.pushed if name == queue_name]


class FakeFetcher:
    """Writes a placeholder file, or raises the configured error."""

    def __init__(self, error: Exception | None = None) -> None:
        self.error = error
        self.calls: list[tuple[str, str]] = []

    async def fetch(self, location, destination: Path) -> Path:
        self.calls.append((location.bucket, location.key))
        if self.error is not None:
            raise self.error
        destination.write_bytes(b"fake-video")
        return destination


class FakeAnalyzer:
    """Returns queued results (or raises queued errors) in order."""

    def __init__(self, *outcomes: AnalysisResult | Exception) -> None:
        self.outcomes = list(outcomes)
        self.paths: list[Path] = []

    async def analyze(self, video_path: Path) -> AnalysisResult:
        self.paths.append(video_path)
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeRouter:
    def __init__(self) -> None:
        self.routed: list[tuple[uuid.UUID, int, AnalysisResult]] = []

    async def route(self, video_id: uuid.UUID, pet_id: int, result: AnalysisResult) -> bool:
        self.routed.append((video_id, pet_id, result))
        return True


class FakeTextGenerator:
    def __init__(self, text: str | Exception = '{"sms_text": "hi", "email_body": "hello"}'):
        self.text = text
        self.prompts: list[str] = []

    async def generate_text(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if isinstance(self.text, Exception):
            raise self.text
        return self.text


class RecordingChannel:
    """Notification channel that records sends, optionally failing them."""

    def __init__(self, name: str, error: Exception | None = None) -> None:
        self.name = name
        self.error = error
        self.sent = []

    async def send(self, notification) -> None:
        if self.error is not None:
            raise self.error
        self.sent.append(notification)
