"""Unit tests for the archiver runner."""

import asyncio
import base64
from unittest.mock import AsyncMock, MagicMock

import pytest

from archiver.archivers.images import create_image_archiver_profile, image_id
from archiver.cli.config import ArchiverSettings
from archiver.cli.runner import ArchiverProfile, ArchiverRunner, ExitCode
from archiver.errors import CdpConnectionError
from archiver.intercept.browser_factory import ALREADY_RUNNING_HINT
from archiver.intercept.engine import InterceptionEngine

from tests.helpers import PNG_BYTES, FakeCdpConnection, paused_event, target_event

WS_URL = "ws://127.0.0.1:12345/devtools/browser/abc"


@pytest.fixture
def settings(tmp_path):
    return ArchiverSettings(
        cdp_port=12345,
        chromium_path="/usr/bin/chromium",
        archive_path=(tmp_path / "archive").as_posix(),
        capture_rules=[{"from": "https://example.com/*", "intercept": ["*.png"]}],
    )


@pytest.fixture
def browser_factory():
    factory = MagicMock()
    factory.resolve_debugger_url = AsyncMock(return_value=WS_URL)
    factory.stop = AsyncMock()
    return factory


@pytest.fixture
def fake_engine():
    engine = MagicMock()
    engine.start = AsyncMock()
    engine.stop = AsyncMock()
    engine.wait_closed = AsyncMock(return_value=None)
    engine.is_running = False
    engine.get_stats.return_value = {}
    return engine


class TestBuildContext:
    """Tests for wiring a profile."""

    def test_rules_from_settings(self, settings, browser_factory):
        configs = []
        runner = ArchiverRunner(
            create_image_archiver_profile(), settings, browser_factory,
            engine_factory=lambda config: configs.append(config) or MagicMock(),
        )

        context = runner.build_context()

        config = configs[0]
        assert config.capture_rules[0].intercept_patterns == ["*.png"]
        assert config.response_handler is not None
        assert context.store.write_records is True

    def test_profile_rules_win(self, settings, browser_factory):
        configs = []
        profile = ArchiverProfile(
            name="custom", version="0.1", handler_factory=lambda context: AsyncMock(),
            capture_rules=[{"from": "*", "intercept": ["*.jpg"]}],
        )
        runner = ArchiverRunner(
            profile, settings, browser_factory,
            engine_factory=lambda config: configs.append(config) or MagicMock(),
        )

        runner.build_context()

        assert configs[0].capture_rules[0].intercept_patterns == ["*.jpg"]

    def test_interception_only_profile(self, settings, browser_factory):
        configs = []
        profile = ArchiverProfile(
            name="custom", version="0.1",
            target_predicate=lambda kind, url, register: None,
            raw_pause_handler=AsyncMock(),
        )
        runner = ArchiverRunner(
            profile, settings, browser_factory,
            engine_factory=lambda config: configs.append(config) or MagicMock(),
        )

        runner.build_context()

        assert configs[0].capture_rules is None
        assert configs[0].response_handler is None

    def test_skip_record(self, settings, browser_factory):
        settings.skip_record = True
        runner = ArchiverRunner(create_image_archiver_profile(), settings, browser_factory, MagicMock())

        assert runner.build_context().store.write_records is False


class TestRun:
    """Tests for running an archiver to completion."""

    @pytest.mark.asyncio
    async def test_success(self, settings, browser_factory, fake_engine):
        runner = ArchiverRunner(
            create_image_archiver_profile(), settings, browser_factory, lambda config: fake_engine
        )

        assert await runner.run() == ExitCode.SUCCESS

        fake_engine.start.assert_awaited_once_with(WS_URL)
        browser_factory.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_configured_url_skips_browser(self, settings, browser_factory, fake_engine):
        settings.web_socket_debugger_url = "ws://elsewhere/devtools/browser/x"
        runner = ArchiverRunner(
            create_image_archiver_profile(), settings, browser_factory, lambda config: fake_engine
        )

        await runner.run()

        fake_engine.start.assert_awaited_once_with("ws://elsewhere/devtools/browser/x")
        browser_factory.resolve_debugger_url.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_prints_debugger_url(self, settings, browser_factory, fake_engine, capsys):
        settings.print_web_socket_debugger_url = True
        runner = ArchiverRunner(
            create_image_archiver_profile(), settings, browser_factory, lambda config: fake_engine
        )

        await runner.run()

        assert f"webSocketDebuggerUrl: {WS_URL}" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_connection_error(self, settings, browser_factory, fake_engine):
        browser_factory.resolve_debugger_url.side_effect = CdpConnectionError("refused", hint=ALREADY_RUNNING_HINT)
        runner = ArchiverRunner(
            create_image_archiver_profile(), settings, browser_factory, lambda config: fake_engine
        )

        assert await runner.run() == ExitCode.CONNECTION_ERROR

        fake_engine.start.assert_not_awaited()
        browser_factory.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_configuration_error(self, settings, browser_factory):
        # Capture rules without a response handler
        profile = ArchiverProfile(name="broken", version="0.1", handler_factory=lambda context: None)
        runner = ArchiverRunner(profile, settings, browser_factory)

        assert await runner.run() == ExitCode.CONFIG_ERROR

        browser_factory.resolve_debugger_url.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_runtime_error_stops_engine(self, settings, browser_factory, fake_engine):
        fake_engine.wait_closed.side_effect = RuntimeError("boom")
        fake_engine.is_running = True
        runner = ArchiverRunner(
            create_image_archiver_profile(), settings, browser_factory, lambda config: fake_engine
        )

        assert await runner.run() == ExitCode.RUNTIME_ERROR

        fake_engine.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_archives_intercepted_image(self, settings, browser_factory):
        connections = []

        def connection_factory(ws_url, command_timeout=30.0):
            connection = FakeCdpConnection(ws_url, command_timeout)
            connection.responses["Fetch.getResponseBody"] = {
                "body": base64.b64encode(PNG_BYTES).decode(), "base64Encoded": True,
            }
            connections.append(connection)
            return connection

        runner = ArchiverRunner(
            create_image_archiver_profile(), settings, browser_factory,
            engine_factory=lambda config: InterceptionEngine(config, connection_factory=connection_factory),
        )
        task = asyncio.ensure_future(runner.run())
        while not (connections and connections[0].handlers):
            await asyncio.sleep(0)
        connection = connections[0]

        await connection.emit("Target.targetCreated", target_event("target-1", "https://example.com/gallery"))
        await connection.sessions[0].emit(
            "Fetch.requestPaused", paused_event("p1", "https://cdn.example.com/fox.png")
        )
        connection.simulate_close(None)

        assert await task == ExitCode.SUCCESS
        assert runner.context.store.is_archived(image_id("https://cdn.example.com/fox.png"))
        images = list((settings.archive_path / "images").rglob("*.png"))
        assert [p.read_bytes() for p in images] == [PNG_BYTES]
