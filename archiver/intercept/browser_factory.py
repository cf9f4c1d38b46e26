"""Browser discovery and launch for the DevTools protocol connection.

This module provides the BrowserFactory class that finds a browser already
serving the DevTools protocol on the configured port, or launches one with
Playwright, and resolves its ``webSocketDebuggerUrl``.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiohttp
from playwright.async_api import BrowserContext, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from ..errors import CdpConnectionError

logger = logging.getLogger(__name__)

ALREADY_RUNNING_HINT = (
    "Could not connect. This usually means that your browser was already running "
    "(but without having the CDP port set). If that's the case just close it and run "
    "this program again, it will then launch it for you with the correct CDP port configured."
)


def launch_failed_hint(chromium_path: str, config_file: Optional[Path] = None) -> str:
    where = f' in "{config_file}"' if config_file else " in your configuration"
    return (
        f"Something went wrong when launching (or connecting to) your browser. "
        f'Is this the correct path? "{chromium_path}"\nIf not then change it{where}.'
    )


class BrowserConfig:
    """Configuration for browser discovery and launch."""

    def __init__(
        self,
        chromium_path: str,
        cdp_port: int,
        headless: bool = False,
        user_data_dir: Optional[Path] = None,
        initial_url: Optional[str] = None,
        launch_timeout_seconds: float = 15.0,
        host: str = "127.0.0.1",
        extra_args: Optional[List[str]] = None,
    ):
        """Initialize browser configuration.

        Args:
            chromium_path: Browser executable
            cdp_port: Remote debugging port
            headless: Run the launched browser headless
            user_data_dir: Browser profile directory (a temporary one if None)
            initial_url: URL opened after launch
            launch_timeout_seconds: Seconds to wait for the debugging endpoint
            host: Debugging endpoint host
            extra_args: Additional browser command line arguments
        """
        self.chromium_path = chromium_path
        self.cdp_port = cdp_port
        self.headless = headless
        self.user_data_dir = user_data_dir
        self.initial_url = initial_url
        self.launch_timeout_seconds = launch_timeout_seconds
        self.host = host
        self.extra_args = extra_args or []

    @property
    def version_url(self) -> str:
        return f"http://{self.host}:{self.cdp_port}/json/version"

    def to_launch_options(self) -> Dict[str, Any]:
        """Convert to Playwright persistent context launch options."""
        return {
            'user_data_dir': str(self.user_data_dir) if self.user_data_dir else "",
            'executable_path': self.chromium_path,
            'headless': self.headless,
            'args': [f"--remote-debugging-port={self.cdp_port}", *self.extra_args],
            'no_viewport': True,
        }


class BrowserFactory:
    """Connects to or launches a DevTools protocol capable browser."""

    def __init__(self, config: BrowserConfig, config_file: Optional[Path] = None):
        """Initialize browser factory.

        Args:
            config: Browser configuration
            config_file: Settings file named in launch failure hints
        """
        self.config = config
        self.config_file = config_file
        self.playwright: Optional[Playwright] = None
        self.context: Optional[BrowserContext] = None

    async def probe(self) -> Optional[str]:
        """Ask the debugging endpoint for the browser WebSocket URL.

        Returns:
            ``webSocketDebuggerUrl``, or None if nothing answers
        """
        try:
            timeout = aiohttp.ClientTimeout(total=3)
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(self.config.version_url) as response:
                    if response.status != 200:
                        return None
                    info = await response.json(content_type=None)
                    return info.get("webSocketDebuggerUrl")
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError, ValueError) as e:
            logger.debug(f"DevTools endpoint check failed for {self.config.version_url}: {e}")
            return None

    async def start(self) -> None:
        """Launch the browser with the remote debugging port enabled.

        Raises:
            CdpConnectionError: If the browser fails to launch
        """
        if self.playwright is not None:
            logger.warning("Browser factory already started")
            return

        logger.info(f"Launching browser: {self.config.chromium_path}")
        try:
            self.playwright = await async_playwright().start()
            self.context = await self.playwright.chromium.launch_persistent_context(
                **self.config.to_launch_options()
            )
            if self.config.initial_url:
                page = self.context.pages[0] if self.context.pages else await self.context.new_page()
                await page.goto(self.config.initial_url, wait_until="commit")
        except PlaywrightError as e:
            await self.stop()
            raise CdpConnectionError(
                f"Failed to launch the browser: {e}",
                hint=launch_failed_hint(self.config.chromium_path, self.config_file),
            )

        logger.info(f"Browser launched (headless={self.config.headless})")

    async def resolve_debugger_url(self) -> str:
        """Find or launch the browser and return its WebSocket URL.

        Returns:
            Browser ``webSocketDebuggerUrl``

        Raises:
            CdpConnectionError: If no endpoint answers in time
        """
        url = await self.probe()
        if url:
            logger.debug(f"Using running browser at port {self.config.cdp_port}")
            return url

        await self.start()
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.launch_timeout_seconds
        while loop.time() < deadline:
            url = await self.probe()
            if url:
                return url
            await asyncio.sleep(0.25)

        raise CdpConnectionError(
            f"Can't connect to the DevTools protocol at {self.config.version_url}",
            hint=ALREADY_RUNNING_HINT,
        )

    async def stop(self) -> None:
        """Close the launched browser and stop Playwright."""
        try:
            if self.context is not None:
                await self.context.close()
                self.context = None
            if self.playwright is not None:
                await self.playwright.stop()
                self.playwright = None
        except Exception as e:
            logger.error(f"Error stopping browser factory: {e}")

    @property
    def launched(self) -> bool:
        return self.context is not None

    def __repr__(self) -> str:
        return f"BrowserFactory(port={self.config.cdp_port}, launched={self.launched})"
