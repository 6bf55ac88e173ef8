import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from autoprint.collaborators.interfaces import DocumentInspector, MessagingChannel, PrinterDriver
from autoprint.db.store import JobStore
from autoprint.domain.errors import ConfigurationError
from autoprint.domain.states import TaskKind
from autoprint.events.hub import EventHub
from autoprint.handlers.notify_user import NotifyUserHandler
from autoprint.handlers.print_job import PrintJobHandler
from autoprint.handlers.process_file import ProcessFileHandler
from autoprint.queue.task_queue import TaskQueue
from autoprint.services.orchestrator import PrintOrchestrator
from autoprint.settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)

class OrchestratorBuilder:
    """
    Assembles a PrintOrchestrator from its collaborators.

    build() refuses to produce an orchestrator with a missing collaborator,
    so no task can be dispatched to a handler that can't do its work.
    """

    def __init__(self, settings: Settings = default_settings):
        self._settings = settings
        self._session_factory: Optional[async_sessionmaker[AsyncSession]] = None
        self._hub: Optional[EventHub] = None
        self._inspector: Optional[DocumentInspector] = None
        self._printer: Optional[PrinterDriver] = None
        self._messaging: Optional[MessagingChannel] = None

    def with_settings(self, settings: Settings) -> "OrchestratorBuilder":
        self._settings = settings
        return self

    def with_session_factory(self, session_factory: async_sessionmaker[AsyncSession]) -> "OrchestratorBuilder":
        self._session_factory = session_factory
        return self

    def with_hub(self, hub: EventHub) -> "OrchestratorBuilder":
        self._hub = hub
        return self

    def with_inspector(self, inspector: DocumentInspector) -> "OrchestratorBuilder":
        self._inspector = inspector
        return self

    def with_printer(self, printer: PrinterDriver) -> "OrchestratorBuilder":
        self._printer = printer
        return self

    def with_messaging(self, messaging: MessagingChannel) -> "OrchestratorBuilder":
        self._messaging = messaging
        return self

    def _validate(self) -> None:
        missing = [
            name for name, value in (
                ("session_factory", self._session_factory),
                ("inspector", self._inspector),
                ("printer", self._printer),
                ("messaging", self._messaging),
            )
            if value is None
        ]
        if missing:
            raise ConfigurationError(f"Missing collaborator(s): {', '.join(missing)}")

        checks = (
            ("inspector", self._inspector, DocumentInspector),
            ("printer", self._printer, PrinterDriver),
            ("messaging", self._messaging, MessagingChannel),
        )
        for name, value, protocol in checks:
            if not isinstance(value, protocol):
                raise ConfigurationError(f"{name} does not implement {protocol.__name__}")

    def build(self) -> PrintOrchestrator:
        self._validate()
        s = self._settings

        hub = self._hub or EventHub(buffer_size=s.EVENT_SUBSCRIBER_BUFFER)
        store = JobStore(self._session_factory)
        queue = TaskQueue(self._session_factory, hub, settings=s)

        queue.register(
            TaskKind.PROCESS_FILE,
            ProcessFileHandler(store, self._inspector, self._messaging, hub, s),
            concurrency=s.PROCESS_FILE_CONCURRENCY
        )
        queue.register(
            TaskKind.PRINT_JOB,
            PrintJobHandler(store, self._inspector, self._printer, self._messaging, hub, s),
            concurrency=s.PRINT_JOB_CONCURRENCY
        )
        queue.register(
            TaskKind.NOTIFY_USER,
            NotifyUserHandler(self._messaging),
            concurrency=s.NOTIFY_USER_CONCURRENCY
        )

        logger.info("Print orchestrator assembled")
        return PrintOrchestrator(store, queue, hub, s)
