"""Archiver runner that wires settings, archive and interception together.

An archiver is described by an ArchiverProfile: its name and version, the
capture rules it needs and a factory building its response handler from an
ArchiverContext. The ArchiverRunner loads the archive index, finds or
launches the browser and keeps intercepting until the browser connection
closes.
"""

import logging
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Callable, Dict, List, Optional, Union

from ..errors import CdpConnectionError, ConfigurationError
from ..intercept.browser_factory import BrowserConfig, BrowserFactory
from ..intercept.engine import InterceptionConfig, InterceptionEngine
from ..intercept.target_session import RawPauseHandler, ResponseHandler
from ..intercept.target_watcher import TargetPredicate
from ..models.capture import ArchivedImage, BodyRef, CaptureRule, CapturedResponse, RecordDetails
from ..persistence.archive_store import ArchiveStore
from .config import ArchiverSettings

logger = logging.getLogger(__name__)


class ExitCode(IntEnum):
    """CLI exit codes."""
    SUCCESS = 0           # The browser connection closed normally
    CONFIG_ERROR = 3      # Missing or invalid settings
    CONNECTION_ERROR = 4  # Browser unreachable or connection failed
    RUNTIME_ERROR = 5     # Unexpected error during execution


@dataclass
class ArchiverContext:
    """Everything an archiver's handlers need, passed explicitly."""

    settings: ArchiverSettings
    store: ArchiveStore
    engine: Optional[InterceptionEngine] = None

    async def fetch_body(self, ref: Union[BodyRef, CapturedResponse]) -> bytes:
        """Retrieve a captured response body (once per request)."""
        if self.engine is None:
            raise CdpConnectionError("The interception engine is not started")
        return await self.engine.fetch_body(ref)

    async def archive(
        self,
        artifact_id: Optional[str],
        details: RecordDetails,
        data: bytes,
    ) -> Optional[ArchivedImage]:
        """Persist an artifact; None if it was already archived."""
        return await self.store.persist(artifact_id, details, data)


ResponseHandlerFactory = Callable[[ArchiverContext], ResponseHandler]


@dataclass
class ArchiverProfile:
    """Describes one archiver."""

    name: str
    version: str
    handler_factory: Optional[ResponseHandlerFactory] = None
    initial_url: Optional[str] = None
    # None means the rules from the settings file
    capture_rules: Optional[List[CaptureRule]] = None
    target_predicate: Optional[TargetPredicate] = None
    raw_pause_handler: Optional[RawPauseHandler] = None
    discover_targets_filter: Optional[List[Dict[str, Any]]] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class ArchiverRunner:
    """Runs an archiver profile until the browser connection closes."""

    def __init__(
        self,
        profile: ArchiverProfile,
        settings: ArchiverSettings,
        browser_factory: Optional[BrowserFactory] = None,
        engine_factory: Callable[[InterceptionConfig], InterceptionEngine] = InterceptionEngine,
    ):
        """Initialize the runner.

        Args:
            profile: Archiver to run
            settings: Loaded settings
            browser_factory: Finds or launches the browser (built from the
                settings by default)
            engine_factory: Builds the interception engine
        """
        self.profile = profile
        self.settings = settings
        self.browser_factory = browser_factory or BrowserFactory(
            BrowserConfig(
                chromium_path=settings.chromium_path,
                cdp_port=settings.cdp_port,
                headless=settings.headless,
                user_data_dir=settings.user_data_dir,
                initial_url=settings.initial_url or profile.initial_url,
                launch_timeout_seconds=settings.launch_timeout_seconds,
            ),
            config_file=settings.config_file_path,
        )
        self.engine_factory = engine_factory
        self.context: Optional[ArchiverContext] = None

    def build_context(self) -> ArchiverContext:
        """Build the archive store, the response handler and the engine.

        Raises:
            ConfigurationError: If the profile's configuration is invalid
        """
        store = ArchiveStore(self.settings.archive_path, write_records=not self.settings.skip_record)
        context = ArchiverContext(settings=self.settings, store=store)

        capture_rules = self.profile.capture_rules
        if capture_rules is None:
            capture_rules = self.settings.capture_rules
        response_handler = None
        if self.profile.handler_factory is not None:
            response_handler = self.profile.handler_factory(context)
        else:
            # Interception-only archiver
            capture_rules = None

        if response_handler is not None and not capture_rules:
            logger.warning("No capture rules configured, nothing will be archived")

        context.engine = self.engine_factory(InterceptionConfig(
            initial_url=self.settings.initial_url or self.profile.initial_url,
            capture_rules=capture_rules,
            response_handler=response_handler,
            target_predicate=self.profile.target_predicate,
            raw_pause_handler=self.profile.raw_pause_handler,
            discover_targets_filter=self.profile.discover_targets_filter,
        ))
        self.context = context
        return context

    async def resolve_debugger_url(self) -> str:
        """Configured WebSocket URL, else the one of a found or launched browser."""
        if self.settings.web_socket_debugger_url:
            return self.settings.web_socket_debugger_url
        return await self.browser_factory.resolve_debugger_url()

    async def run(self) -> ExitCode:
        """Run the archiver.

        Returns:
            Exit code for the process
        """
        logger.info(f"Using {self.profile.name} version: {self.profile.version}")
        logger.info(f"Using archive directory: {self.settings.archive_path}")
        engine = None
        try:
            context = self.build_context()
            engine = context.engine
            count = context.store.load_index()
            logger.info(f"Images archived: {count}.")

            web_socket_debugger_url = await self.resolve_debugger_url()
            if self.settings.print_web_socket_debugger_url:
                print(f"webSocketDebuggerUrl: {web_socket_debugger_url}")

            await engine.start(web_socket_debugger_url)
            await engine.wait_closed()
            logger.debug(f"Interception finished: {engine.get_stats()}")
            return ExitCode.SUCCESS

        except ConfigurationError as e:
            logger.error(f"Configuration error: {e}")
            return ExitCode.CONFIG_ERROR
        except CdpConnectionError as e:
            logger.error(str(e))
            if e.hint:
                logger.error(e.hint)
            return ExitCode.CONNECTION_ERROR
        except Exception as e:
            logger.exception(f"Runtime error: {e}")
            return ExitCode.RUNTIME_ERROR
        finally:
            if engine is not None and engine.is_running:
                await engine.stop()
            await self.browser_factory.stop()
