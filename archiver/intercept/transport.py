"""DevTools protocol transport over an aiohttp WebSocket.

This module provides the CdpConnection class, which speaks the Chrome
DevTools Protocol in flattened session mode, and the CdpSession class, which
represents one attached target. Commands are matched to their responses by
message id; events are delivered to subscribers in arrival order.
"""

import asyncio
import inspect
import json
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple, Union

import aiohttp

from ..errors import BindError, CdpConnectionError, ProtocolError

logger = logging.getLogger(__name__)
wire_logger = logging.getLogger(__name__ + ".wire")

EventHandler = Callable[[Dict[str, Any]], Union[None, Awaitable[Any]]]
CloseCallback = Callable[[Optional[BaseException]], None]


class _Subscriptions:
    """Event name to handler list mapping with ``once`` support."""

    def __init__(self):
        self._handlers: Dict[str, List[EventHandler]] = {}

    def add(self, method: str, handler: EventHandler) -> None:
        self._handlers.setdefault(method, []).append(handler)

    def remove(self, method: str, handler: Optional[EventHandler] = None) -> None:
        if handler is None:
            self._handlers.pop(method, None)
            return
        handlers = self._handlers.get(method)
        if handlers and handler in handlers:
            handlers.remove(handler)
            if not handlers:
                del self._handlers[method]

    def get(self, method: str) -> List[EventHandler]:
        # Copy so handlers can unsubscribe while being dispatched
        return list(self._handlers.get(method, ()))

    def clear(self) -> None:
        self._handlers.clear()

    def __len__(self) -> int:
        return sum(len(handlers) for handlers in self._handlers.values())


class CdpSession:
    """A flattened protocol session bound to one target.

    The session owns its event subscriptions. Once detached no further events
    are delivered to it and its subscriptions are gone.
    """

    def __init__(self, connection: "CdpConnection", target_id: str):
        """Initialize the session. Use CdpConnection.open_session() instead.

        Args:
            connection: Connection the session is multiplexed on
            target_id: Target to attach to
        """
        self.connection = connection
        self.target_id = target_id
        self.id: Optional[str] = None
        self.ready: asyncio.Future = asyncio.get_running_loop().create_future()
        self._subscriptions = _Subscriptions()
        self._detached = False
        self._detach_callbacks: List[Callable[["CdpSession"], None]] = []

    async def _attach(self) -> None:
        try:
            result = await self.connection.send(
                "Target.attachToTarget",
                {"targetId": self.target_id, "flatten": True},
            )
            self.id = result["sessionId"]
        except Exception as e:
            if not self.ready.done():
                self.ready.set_exception(BindError(self.target_id, str(e)))
            return

        if self._detached:
            # detach() was requested while attaching
            self.connection._forget_session(self)
            if not self.ready.done():
                self.ready.set_exception(BindError(self.target_id, "detached while attaching"))
            return

        self.connection._register_session(self)
        if not self.ready.done():
            self.ready.set_result(self)

    async def send(self, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Send a command within this session.

        Raises:
            BindError: If the session never became ready
            CdpConnectionError: If the session was detached
            ProtocolError: If the browser refused the command
        """
        await self.ready
        if self._detached:
            raise CdpConnectionError(f"Session {self.id} is detached")
        return await self.connection.send(method, params, session_id=self.id)

    def on(self, method: str, handler: EventHandler) -> None:
        """Subscribe to an event of this session."""
        if not self._detached:
            self._subscriptions.add(method, handler)

    def once(self, method: str, handler: EventHandler) -> None:
        """Subscribe to the next occurrence of an event of this session."""
        def wrapper(params: Dict[str, Any]):
            self._subscriptions.remove(method, wrapper)
            return handler(params)
        self.on(method, wrapper)

    def off(self, method: str, handler: Optional[EventHandler] = None) -> None:
        """Unsubscribe one handler, or every handler of an event."""
        self._subscriptions.remove(method, handler)

    def on_detached(self, callback: Callable[["CdpSession"], None]) -> None:
        """Register a callback invoked once when the session detaches."""
        if self._detached:
            callback(self)
        else:
            self._detach_callbacks.append(callback)

    async def detach(self) -> None:
        """Detach from the target and drop all subscriptions.

        Subscriptions are dropped before the detach command is sent, so no
        event is delivered after this call starts.
        """
        if self._detached:
            return
        self._mark_detached()
        if self.id is not None:
            await self.connection.send("Target.detachFromTarget", {"sessionId": self.id})

    @property
    def detached(self) -> bool:
        return self._detached

    def _mark_detached(self) -> None:
        if self._detached:
            return
        self._detached = True
        self._subscriptions.clear()
        self.connection._forget_session(self)
        callbacks, self._detach_callbacks = self._detach_callbacks, []
        for callback in callbacks:
            try:
                callback(self)
            except Exception as e:
                logger.error(f"Error in session detach callback: {e}")

    def _dispatch(self, method: str, params: Dict[str, Any]) -> None:
        for handler in self._subscriptions.get(method):
            self.connection._invoke(handler, params, method)

    def __repr__(self) -> str:
        return f"CdpSession(target={self.target_id}, id={self.id}, detached={self._detached})"


class CdpConnection:
    """Browser-level DevTools protocol connection."""

    def __init__(self, ws_url: str, command_timeout: float = 30.0):
        """Initialize the connection.

        Args:
            ws_url: Browser ``webSocketDebuggerUrl``
            command_timeout: Seconds to wait for a command response
        """
        self.ws_url = ws_url
        self.command_timeout = command_timeout
        self._http: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._reader: Optional[asyncio.Task] = None
        self._next_id = 1
        self._pending: Dict[int, Tuple[str, asyncio.Future]] = {}
        self._subscriptions = _Subscriptions()
        self._sessions: Dict[str, CdpSession] = {}
        self._tasks: Set[asyncio.Task] = set()
        self._close_callbacks: List[CloseCallback] = []
        self._closed: Optional[asyncio.Future] = None

    async def connect(self) -> None:
        """Open the WebSocket and start reading messages.

        Raises:
            CdpConnectionError: If the endpoint cannot be reached
        """
        if self._ws is not None:
            logger.warning("CDP connection already open")
            return

        loop = asyncio.get_running_loop()
        self._closed = loop.create_future()
        self._http = aiohttp.ClientSession()
        try:
            # Response bodies can be large; no message size limit
            self._ws = await self._http.ws_connect(self.ws_url, max_msg_size=0)
        except (aiohttp.ClientError, OSError) as e:
            await self._http.close()
            self._http = None
            raise CdpConnectionError(f"Can't connect to the DevTools protocol at {self.ws_url}: {e}")

        self._reader = loop.create_task(self._read_loop())
        logger.debug(f"Connected to {self.ws_url}")

    async def close(self) -> None:
        """Close the connection and fail all pending commands."""
        if self._ws is not None:
            await self._ws.close()
        if self._reader is not None:
            try:
                await self._reader
            except asyncio.CancelledError:
                pass
            self._reader = None
        if self._http is not None:
            await self._http.close()
            self._http = None
        self._handle_closed(None)

    @property
    def is_connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    async def wait_closed(self) -> Optional[BaseException]:
        """Wait until the connection closes.

        Returns:
            The error that closed the connection, or None for a clean close
        """
        if self._closed is None:
            return None
        return await asyncio.shield(self._closed)

    def on_close(self, callback: CloseCallback) -> None:
        """Register a callback invoked once with the close error (or None)."""
        self._close_callbacks.append(callback)

    def on(self, method: str, handler: EventHandler) -> None:
        """Subscribe to a browser-level event."""
        self._subscriptions.add(method, handler)

    def once(self, method: str, handler: EventHandler) -> None:
        """Subscribe to the next occurrence of a browser-level event."""
        def wrapper(params: Dict[str, Any]):
            self._subscriptions.remove(method, wrapper)
            return handler(params)
        self.on(method, wrapper)

    def off(self, method: str, handler: Optional[EventHandler] = None) -> None:
        """Unsubscribe from a browser-level event."""
        self._subscriptions.remove(method, handler)

    def open_session(self, target_id: str) -> CdpSession:
        """Start attaching to a target.

        Returns:
            The session immediately; its ``ready`` future resolves once the
            target is attached, or fails with BindError
        """
        session = CdpSession(self, target_id)
        self._track(asyncio.get_running_loop().create_task(session._attach()))
        return session

    async def send(
        self,
        method: str,
        params: Optional[Dict[str, Any]] = None,
        session_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Send a command and wait for its result.

        Args:
            method: Command name, e.g. ``Fetch.enable``
            params: Command parameters
            session_id: Session to address, or None for the browser

        Returns:
            Command result

        Raises:
            CdpConnectionError: If the connection is closed
            ProtocolError: If the browser answered with an error
        """
        if not self.is_connected:
            raise CdpConnectionError("The CDP connection is closed")

        msg_id = self._next_id
        self._next_id += 1
        message: Dict[str, Any] = {"id": msg_id, "method": method}
        if params:
            message["params"] = params
        if session_id:
            message["sessionId"] = session_id

        future = asyncio.get_running_loop().create_future()
        self._pending[msg_id] = (method, future)
        try:
            raw = json.dumps(message)
            wire_logger.debug(f"=> {raw}")
            await self._ws.send_str(raw)
            return await asyncio.wait_for(future, self.command_timeout)
        except asyncio.TimeoutError:
            raise ProtocolError(method, None, f"no response after {self.command_timeout}s")
        except ConnectionResetError as e:
            raise CdpConnectionError(f"The CDP connection was lost: {e}")
        finally:
            self._pending.pop(msg_id, None)

    async def _read_loop(self) -> None:
        error: Optional[BaseException] = None
        try:
            async for msg in self._ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    wire_logger.debug(f"<= {msg.data}")
                    try:
                        message = json.loads(msg.data)
                    except json.JSONDecodeError as e:
                        logger.warning(f"Discarding malformed CDP message: {e}")
                        continue
                    self._dispatch_message(message)
                elif msg.type == aiohttp.WSMsgType.ERROR:
                    error = self._ws.exception()
                    break
        except Exception as e:
            error = e
        finally:
            self._handle_closed(error)
            # Also reached when the browser closes the socket
            if self._http is not None:
                http, self._http = self._http, None
                await http.close()

    def _dispatch_message(self, message: Dict[str, Any]) -> None:
        """Route one decoded message to a pending command or subscribers."""
        if "id" in message:
            pending = self._pending.get(message["id"])
            if pending is None:
                return
            method, future = pending
            if future.done():
                return
            if "error" in message:
                error = message["error"] or {}
                future.set_exception(ProtocolError(
                    method, error.get("code"), error.get("message", ""), error.get("data")
                ))
            else:
                future.set_result(message.get("result") or {})
            return

        method = message.get("method")
        if not isinstance(method, str):
            return
        params = message.get("params") or {}

        session_id = message.get("sessionId")
        if session_id:
            session = self._sessions.get(session_id)
            if session is not None:
                session._dispatch(method, params)
            return

        if method == "Target.detachedFromTarget":
            session = self._sessions.get(params.get("sessionId"))
            if session is not None:
                session._mark_detached()

        for handler in self._subscriptions.get(method):
            self._invoke(handler, params, method)

    def _invoke(self, handler: EventHandler, params: Dict[str, Any], method: str) -> None:
        try:
            result = handler(params)
        except Exception:
            logger.exception(f"Error in {method} handler")
            return
        if inspect.isawaitable(result):
            self._track(asyncio.ensure_future(result))

    def _track(self, task: asyncio.Future) -> None:
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Future) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error("Unhandled error in CDP event handler", exc_info=error)

    def _register_session(self, session: CdpSession) -> None:
        self._sessions[session.id] = session

    def _forget_session(self, session: CdpSession) -> None:
        if session.id is not None and self._sessions.get(session.id) is session:
            del self._sessions[session.id]

    def _handle_closed(self, error: Optional[BaseException]) -> None:
        if self._closed is None or self._closed.done():
            return
        self._ws = None

        reason = CdpConnectionError(f"The CDP connection was closed: {error}" if error else "The CDP connection was closed")
        for _, future in list(self._pending.values()):
            if not future.done():
                future.set_exception(reason)
        for session in list(self._sessions.values()):
            session._mark_detached()

        self._closed.set_result(error)
        callbacks, self._close_callbacks = self._close_callbacks, []
        for callback in callbacks:
            try:
                callback(error)
            except Exception as e:
                logger.error(f"Error in connection close callback: {e}")

    async def wait_for_handlers(self) -> None:
        """Wait for all running async event handlers to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def __repr__(self) -> str:
        return f"CdpConnection(url={self.ws_url}, connected={self.is_connected}, sessions={len(self._sessions)})"
