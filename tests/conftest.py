"""Shared fixtures: a controllable clock and canned résumé text."""

from datetime import datetime, timedelta, timezone

import pytest


class FakeClock:
    """Monotonic and wall clock that only moves when slept on or advanced."""

    def __init__(self):
        self.seconds = 1000.0
        self.start = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self.seconds

    def now(self) -> datetime:
        return self.start + timedelta(seconds=self.seconds - 1000.0)

    def advance(self, seconds: float) -> None:
        self.seconds += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.seconds += max(0.0, seconds)


@pytest.fixture
def fake_clock():
    return FakeClock()


RESUME_TEXT = """Nguyễn Văn An
Senior Backend Engineer
Email: an.nguyen@example.com | Phone: +84 912 345 678

• 6 years building Node.js and MongoDB services for e-commerce platforms
• Designed event driven order pipelines handling millions of requests per day
• Led migration of legacy monoliths to containerized microservices on Kubernetes
• Mentored junior engineers and ran weekly code reviews for the platform team

Skills: Node.js, MongoDB, Docker, TypeScript, PostgreSQL
Education: Bachelor of Computer Science, Hanoi University of Science and Technology
"""


@pytest.fixture
def resume_text():
    return RESUME_TEXT
