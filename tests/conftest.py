"""Shared fixtures: a throwaway SQLite database per test, fake collaborators, fast timings."""
import asyncio
import os

# Keep the module-level default engine off the working directory.
os.environ.setdefault("SQLALCHEMY_DATABASE_URI", "sqlite+aiosqlite:///:memory:")

from typing import Optional  # noqa: E402

import pytest  # noqa: E402

from autoprint.db.session import build_engine, build_session_factory, init_models  # noqa: E402
from autoprint.db.store import JobStore  # noqa: E402
from autoprint.domain.models import InspectionResult, SubmitResult  # noqa: E402
from autoprint.events.hub import EventHub  # noqa: E402
from autoprint.services.builder import OrchestratorBuilder  # noqa: E402
from autoprint.settings import Settings  # noqa: E402


class FakeInspector:
    def __init__(self, pages: int = 8, price_per_page: float = 5.0):
        self.pages = pages
        self.price_per_page = price_per_page
        self.errors: list[Exception] = []
        self.inspected: list[str] = []

    async def inspect(self, location: str) -> InspectionResult:
        self.inspected.append(location)
        if self.errors:
            raise self.errors.pop(0)
        return InspectionResult(
            page_count=self.pages,
            cost_estimate=self.pages * self.price_per_page,
            document_ref=location
        )

    async def prepare_for_print(self, location: str) -> str:
        return location


class FakePrinter:
    def __init__(self, accept: bool = True, delay: float = 0.0):
        self.accept = accept
        self.delay = delay
        # Rejections to return before honouring `accept`
        self.failures = 0
        self.submitted: list[str] = []
        self.current = 0
        self.max_concurrent = 0
        self.on_submit = None

    async def submit(self, location, printer_name, options) -> SubmitResult:
        self.current += 1
        self.max_concurrent = max(self.max_concurrent, self.current)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.on_submit:
                await self.on_submit(location)
            self.submitted.append(location)
            if self.failures > 0:
                self.failures -= 1
                return SubmitResult(accepted=False, error="Paper jam")
            if not self.accept:
                return SubmitResult(accepted=False, error="Printer offline")
            return SubmitResult(accepted=True, reference=f"ref-{len(self.submitted)}")
        finally:
            self.current -= 1


class FakeMessaging:
    def __init__(self, deliver: bool = True):
        self.deliver = deliver
        self.raise_error: Optional[Exception] = None
        self.sent: list[tuple[str, str]] = []
        self.files: list[tuple[str, str, Optional[str]]] = []

    async def send(self, payer_identity: str, text: str) -> bool:
        if self.raise_error:
            raise self.raise_error
        if self.deliver:
            self.sent.append((payer_identity, text))
        return self.deliver

    async def send_file(self, payer_identity: str, location: str, caption: Optional[str] = None) -> bool:
        if self.raise_error:
            raise self.raise_error
        if self.deliver:
            self.files.append((payer_identity, location, caption))
        return self.deliver

    def texts(self) -> list[str]:
        return [text for _, text in self.sent]


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def settings(tmp_path):
    return Settings(
        SQLALCHEMY_DATABASE_URI=f"sqlite+aiosqlite:///{tmp_path / 'autoprint.db'}",
        UPLOAD_DIR=str(tmp_path / "uploads"),
        RETRY_BASE_DELAY_SECONDS=0.01,
        RETRY_MAX_DELAY_SECONDS=0.05,
        QUEUE_POLL_INTERVAL_SECONDS=0.01,
        PRINT_PROGRESS_SECONDS_PER_MINUTE=0,
        TASK_EXECUTION_TIMEOUT_SECONDS=5,
        MESSAGING_API_URL="",
    )


@pytest.fixture
async def engine(settings, anyio_backend):
    engine = build_engine(settings.SQLALCHEMY_DATABASE_URI)
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def store(session_factory):
    return JobStore(session_factory)


@pytest.fixture
def hub():
    return EventHub()


@pytest.fixture
def inspector():
    return FakeInspector()


@pytest.fixture
def printer():
    return FakePrinter()


@pytest.fixture
def messaging():
    return FakeMessaging()


@pytest.fixture
async def orchestrator(settings, session_factory, hub, inspector, printer, messaging, anyio_backend):
    orch = (
        OrchestratorBuilder(settings)
        .with_session_factory(session_factory)
        .with_hub(hub)
        .with_inspector(inspector)
        .with_printer(printer)
        .with_messaging(messaging)
        .build()
    )
    yield orch
    await orch.stop()


async def wait_for(predicate, timeout: float = 5.0, interval: float = 0.02):
    """Polls an async or sync predicate until it returns a truthy value."""
    deadline = asyncio.get_running_loop().time() + timeout
    while True:
        result = predicate()
        if asyncio.iscoroutine(result):
            result = await result
        if result:
            return result
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("Condition not met before timeout")
        await asyncio.sleep(interval)


async def next_event(sub, event_type: str, timeout: float = 5.0, where=None):
    """Consumes events from `sub` until one of `event_type` matches `where`."""
    deadline = asyncio.get_running_loop().time() + timeout
    while True:
        remaining = deadline - asyncio.get_running_loop().time()
        if remaining <= 0:
            raise AssertionError(f"No {event_type} event before timeout")
        event = await sub.get(timeout=remaining)
        if event.type == event_type and (where is None or where(event.payload)):
            return event
