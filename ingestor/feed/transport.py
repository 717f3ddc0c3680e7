"""
WebSocket transport.

StreamClient talks to the network through the small StreamTransport
interface and receives connection events through TransportListener
callbacks. AiohttpTransport is the production implementation; tests
inject fakes through a TransportFactory.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Protocol

import aiohttp
import orjson

logger = logging.getLogger(__name__)


class StreamTransport(Protocol):
    @property
    def is_open(self) -> bool: ...

    async def send(self, message: str) -> None: ...

    async def close(self) -> None: ...


class TransportListener(Protocol):
    async def on_message(self, raw: str) -> None:
        """Called for every TEXT frame, one at a time, in arrival order."""
        ...

    async def on_close(self, code: Optional[int], reason: str) -> None: ...

    async def on_error(self, error: BaseException) -> None: ...


# (url, listener) -> open transport; raises if the handshake fails
TransportFactory = Callable[[str, TransportListener], Awaitable[StreamTransport]]


class AiohttpTransport:
    """
    StreamTransport over an aiohttp ClientWebSocketResponse.

    Owns its ClientSession and a single receive task. Listener events fire at
    most once per transport (close or error), and never after a local
    ``close()``. When the remote side ends the connection the session is
    released before the listener hears about it.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        ws: aiohttp.ClientWebSocketResponse,
        listener: TransportListener,
        name: str = "transport",
    ) -> None:
        self._session = session
        self._ws = ws
        self._listener = listener
        self._name = name
        self._closing = False
        self._receiving = True
        self._receive_task: Optional[asyncio.Task[None]] = None

    @classmethod
    async def open(
        cls,
        url: str,
        listener: TransportListener,
        connect_timeout_s: float = 10.0,
        heartbeat_s: float = 30.0,
        name: str = "transport",
    ) -> AiohttpTransport:
        timeout = aiohttp.ClientTimeout(total=connect_timeout_s)
        session = aiohttp.ClientSession(timeout=timeout)
        try:
            ws = await session.ws_connect(url, heartbeat=heartbeat_s, autoping=True)
        except BaseException:
            await session.close()
            raise

        transport = cls(session, ws, listener, name=name)
        transport._receive_task = asyncio.create_task(
            transport._receive_loop(), name=f"{name}_receive"
        )
        return transport

    @property
    def is_open(self) -> bool:
        return not self._closing and not self._ws.closed

    @property
    def is_released(self) -> bool:
        """True once the underlying ClientSession is closed."""
        return self._session.closed

    async def send(self, message: str) -> None:
        await self._ws.send_str(message)

    async def _receive_loop(self) -> None:
        code: Optional[int] = None
        reason = ""
        error: Optional[BaseException] = None

        try:
            async for msg in self._ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    await self._listener.on_message(msg.data)

                elif msg.type == aiohttp.WSMsgType.BINARY:
                    logger.debug(f"[{self._name}] Received binary message (ignored)")

                elif msg.type == aiohttp.WSMsgType.ERROR:
                    error = self._ws.exception() or ConnectionResetError("websocket error frame")
                    break

                elif msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED):
                    break

        except asyncio.CancelledError:
            logger.debug(f"[{self._name}] Receive loop cancelled")
            raise
        except Exception as e:
            error = e
        finally:
            self._receiving = False

        if self._closing:
            return

        code = self._ws.close_code
        if error is None and self._ws.exception() is not None:
            error = self._ws.exception()

        try:
            if not self._session.closed:
                await self._session.close()
        except Exception as e:
            logger.warning(f"[{self._name}] Error while releasing session: {e}")

        if error is not None:
            logger.warning(f"[{self._name}] Connection error: {error}")
            await self._listener.on_error(error)
        else:
            logger.info(f"[{self._name}] Server closed connection (code={code})")
            await self._listener.on_close(code, reason)

    async def close(self) -> None:
        """Close the socket and session; the listener is not notified."""
        self._closing = True
        try:
            if not self._ws.closed:
                await self._ws.close()
        finally:
            # Once receiving stopped, the task may still be inside a listener
            # callback that is awaiting this close
            task = self._receive_task
            if (
                self._receiving
                and task is not None
                and not task.done()
                and task is not asyncio.current_task()
            ):
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
            if not self._session.closed:
                await self._session.close()


def encode_control(message: Any) -> str:
    """JSON-encode a control message (e.g. LIST_SUBSCRIPTIONS) for sending."""
    return orjson.dumps(message).decode("utf-8")
