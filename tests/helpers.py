"""Test doubles and event builders shared by the unit tests."""

import asyncio
import inspect
from typing import Any, Callable, Dict, List, Optional, Tuple

from archiver.errors import BindError

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 16
JPG_BYTES = b"\xff\xd8\xff\xe0" + b"\x00" * 16


async def _call_all(handlers: List[Callable], params: Dict[str, Any]) -> None:
    for handler in list(handlers):
        result = handler(params)
        if inspect.isawaitable(result):
            await result


class FakeCdpSession:
    """In-memory stand-in for CdpSession that records commands."""

    def __init__(self, target_id: str, session_id: str):
        self.target_id = target_id
        self.id = session_id
        self.ready: asyncio.Future = asyncio.get_running_loop().create_future()
        self.sent: List[Tuple[str, Optional[Dict[str, Any]]]] = []
        self.responses: Dict[str, Any] = {}
        self.handlers: Dict[str, List[Callable]] = {}
        self.detached = False
        self._detach_callbacks: List[Callable] = []

    async def send(self, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        self.sent.append((method, params))
        result = self.responses.get(method, {})
        if isinstance(result, Exception):
            raise result
        return result

    def sent_methods(self) -> List[str]:
        return [method for method, _ in self.sent]

    def on(self, method: str, handler: Callable) -> None:
        if not self.detached:
            self.handlers.setdefault(method, []).append(handler)

    def off(self, method: str, handler: Optional[Callable] = None) -> None:
        if handler is None:
            self.handlers.pop(method, None)
        elif handler in self.handlers.get(method, []):
            self.handlers[method].remove(handler)

    def on_detached(self, callback: Callable) -> None:
        self._detach_callbacks.append(callback)

    async def detach(self) -> None:
        self.detached = True
        self.handlers.clear()

    def simulate_detached(self) -> None:
        self.detached = True
        self.handlers.clear()
        for callback in self._detach_callbacks:
            callback(self)

    async def emit(self, method: str, params: Dict[str, Any]) -> None:
        await _call_all(self.handlers.get(method, []), params)


class FakeCdpConnection:
    """In-memory stand-in for CdpConnection.

    Sessions become ready immediately unless their target id is listed in
    ``fail_targets`` or ``auto_ready`` is False.
    """

    def __init__(self, ws_url: str = "ws://127.0.0.1:9222/devtools/browser/test", command_timeout: float = 30.0):
        self.ws_url = ws_url
        self.command_timeout = command_timeout
        self.sessions: List[FakeCdpSession] = []
        self.sent: List[Tuple[str, Optional[Dict[str, Any]], Optional[str]]] = []
        self.responses: Dict[str, Any] = {}
        self.handlers: Dict[str, List[Callable]] = {}
        self.close_callbacks: List[Callable] = []
        self.fail_targets: set = set()
        self.auto_ready = True
        self.connected = False
        self._closed: Optional[asyncio.Future] = None

    async def connect(self) -> None:
        self.connected = True
        self._closed = asyncio.get_running_loop().create_future()

    @property
    def is_connected(self) -> bool:
        return self.connected

    async def close(self) -> None:
        self.simulate_close(None)

    def simulate_close(self, error: Optional[BaseException] = None) -> None:
        if not self.connected:
            return
        self.connected = False
        if self._closed is not None and not self._closed.done():
            self._closed.set_result(error)
        for callback in self.close_callbacks:
            callback(error)

    async def wait_closed(self) -> Optional[BaseException]:
        return await self._closed

    def on_close(self, callback: Callable) -> None:
        self.close_callbacks.append(callback)

    def on(self, method: str, handler: Callable) -> None:
        self.handlers.setdefault(method, []).append(handler)

    def off(self, method: str, handler: Optional[Callable] = None) -> None:
        if handler is None:
            self.handlers.pop(method, None)
        elif handler in self.handlers.get(method, []):
            self.handlers[method].remove(handler)

    def open_session(self, target_id: str) -> FakeCdpSession:
        session = FakeCdpSession(target_id, f"session-{len(self.sessions) + 1}")
        self.sessions.append(session)
        if self.auto_ready:
            if target_id in self.fail_targets:
                session.ready.set_exception(BindError(target_id, "No target with given id found"))
            else:
                session.ready.set_result(session)
        return session

    def sessions_for(self, target_id: str) -> List[FakeCdpSession]:
        return [s for s in self.sessions if s.target_id == target_id]

    async def send(
        self,
        method: str,
        params: Optional[Dict[str, Any]] = None,
        session_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        self.sent.append((method, params, session_id))
        result = self.responses.get(method, {})
        if isinstance(result, Exception):
            raise result
        return result

    async def emit(self, method: str, params: Dict[str, Any]) -> None:
        await _call_all(self.handlers.get(method, []), params)


def target_event(target_id: str, url: str, type: str = "page") -> Dict[str, Any]:
    """Params of a Target.targetCreated / Target.targetInfoChanged event."""
    return {"targetInfo": {"targetId": target_id, "type": type, "url": url, "title": ""}}


def paused_event(
    request_id: str,
    url: str,
    network_id: Optional[str] = None,
    status: int = 200,
    content_type: str = "image/png",
) -> Dict[str, Any]:
    """Params of a response stage Fetch.requestPaused event."""
    params = {
        "requestId": request_id,
        "request": {"url": url, "method": "GET", "headers": {}},
        "frameId": "frame-1",
        "resourceType": "Image",
        "responseStatusCode": status,
        "responseStatusText": "OK",
        "responseHeaders": [{"name": "Content-Type", "value": content_type}],
    }
    if network_id is not None:
        params["networkId"] = network_id
    return params
