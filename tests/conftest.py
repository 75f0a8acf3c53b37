from __future__ import annotations

import asyncio
from datetime import date

import pytest

from services.request_sanitizer import GenerationRequest, WriterProfile


class FakeTextGenerator:
    """Replays scripted responses; exceptions in the script are raised."""

    model_name = "fake-model"

    def __init__(self, *responses: object, hang: asyncio.Event | None = None) -> None:
        self._responses = list(responses)
        self._hang = hang
        self.calls: list[str] = []

    async def generate(self, prompt: str) -> str:
        self.calls.append(prompt)
        if self._hang is not None:
            await self._hang.wait()
        item = self._responses.pop(0) if len(self._responses) > 1 else self._responses[0]
        if isinstance(item, BaseException):
            raise item
        return item  # type: ignore[return-value]


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def writer_profile() -> WriterProfile:
    return WriterProfile(
        name="김민주",
        position="구의원",
        region_metro="서울시",
        region_local="강남구",
        electoral_district="강남구 갑",
    )


@pytest.fixture
def generation_request(writer_profile: WriterProfile) -> GenerationRequest:
    return GenerationRequest(
        user_profile=writer_profile,
        prompt="신년 인사말",
        keywords="새해, 희망",
        category="일반",
    )


@pytest.fixture
def written_on() -> date:
    return date(2025, 1, 1)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(autouse=True)
def reset_process_breaker(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr("services.resilient_invoker._breaker", None)
