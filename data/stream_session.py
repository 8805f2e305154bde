"""
Stream session for the Apibara DNA Starknet stream.

Turns a SubscriptionConfig into an open, authenticated, filtered connection
and exposes a pull interface:

    async with StreamSession(url, api_key, subscription) as session:
        while (message := await session.next()) is not None:
            ...

`next()` returns DataMessage, Heartbeat or Invalidate, and None once the
provider closes the stream gracefully. Connection and setup failures are not
retried here; the caller decides.
"""

from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable

import websockets
from websockets.exceptions import (
    ConnectionClosed,
    ConnectionClosedOK,
    InvalidHandshake,
    InvalidURI,
)

from config.loader import get_config
from data.stream_codec import decode_message, encode_subscription
from indexer_logging.logger_manager import setup_module_logger
from shared.exceptions import StreamConnectionError, StreamSetupError
from shared.types import StreamMessage, SubscriptionConfig

_logger = setup_module_logger("stream_session", "stream_session.log", module_folder="Stream_Logs")


# ============================================================================
# TRANSPORT
# ============================================================================


class StreamTransport(ABC):
    """Bidirectional message channel to the stream provider."""

    @abstractmethod
    async def send(self, frame: dict[str, Any]) -> None:
        """Send one frame."""

    @abstractmethod
    async def receive(self) -> str | bytes | dict[str, Any] | None:
        """Return the next raw frame, or None when the provider closed normally."""

    @abstractmethod
    async def close(self) -> None:
        """Close the channel. Safe to call more than once."""


class WebSocketTransport(StreamTransport):
    """JSON frames over a WebSocket, authenticated with a bearer token."""

    def __init__(self, connection: Any) -> None:
        self._ws = connection

    @classmethod
    async def connect(cls, url: str, api_key: str) -> WebSocketTransport:
        ws_cfg = get_config().get_stream_config()
        try:
            connection = await websockets.connect(
                url,
                additional_headers={"Authorization": f"Bearer {api_key}"},
                open_timeout=ws_cfg.get("open_timeout_seconds", 15),
                ping_interval=ws_cfg.get("ping_interval_seconds", 20),
                ping_timeout=ws_cfg.get("ping_timeout_seconds", 30),
                close_timeout=ws_cfg.get("close_timeout_seconds", 10),
                max_size=ws_cfg.get("max_message_bytes", 10 * 1024 * 1024),
            )
        except InvalidURI as exc:
            raise StreamSetupError(f"Invalid stream URL {url}: {exc}") from exc
        except (InvalidHandshake, OSError, asyncio.TimeoutError) as exc:
            raise StreamConnectionError(f"Cannot connect to {url}: {exc}") from exc
        return cls(connection)

    async def send(self, frame: dict[str, Any]) -> None:
        try:
            await self._ws.send(json.dumps(frame))
        except ConnectionClosed as exc:
            raise StreamConnectionError(f"Connection closed while sending: {exc}") from exc

    async def receive(self) -> str | bytes | None:
        try:
            return await self._ws.recv()
        except ConnectionClosedOK:
            return None
        except ConnectionClosed as exc:
            raise StreamConnectionError(f"Connection lost: {exc}") from exc
        except OSError as exc:
            raise StreamConnectionError(f"Transport error: {exc}") from exc

    async def close(self) -> None:
        await self._ws.close()


Connector = Callable[[str, str], Awaitable[StreamTransport]]


# ============================================================================
# SESSION
# ============================================================================


class StreamSession:
    """One subscription to the provider, pulled one message at a time."""

    def __init__(
        self,
        url: str,
        api_key: str,
        subscription: SubscriptionConfig,
        connector: Connector | None = None,
    ) -> None:
        self._url = url
        self._api_key = api_key
        self._subscription = subscription
        self._connector = connector or WebSocketTransport.connect
        self._transport: StreamTransport | None = None
        self._closed = False

    @property
    def subscription(self) -> SubscriptionConfig:
        return self._subscription

    @property
    def is_open(self) -> bool:
        return self._transport is not None and not self._closed

    async def connect(self) -> None:
        """
        Open the connection and send the subscription.

        Raises StreamConnectionError (credentials, network) or
        StreamSetupError (malformed configuration).
        """
        frame = encode_subscription(self._subscription)
        _logger.info(
            "Connecting to %s from block %d (%s)",
            self._url,
            self._subscription.starting_block,
            self._subscription.finality.name,
        )
        self._transport = await self._connector(self._url, self._api_key)
        try:
            await self._transport.send(frame)
        except BaseException:
            await self.close()
            raise
        _logger.info("Connected, listening ...")

    async def next(self) -> StreamMessage | None:
        """Pull the next message; None means the stream ended."""
        if self._transport is None or self._closed:
            raise StreamConnectionError("Stream session is not connected")
        raw = await self._transport.receive()
        if raw is None:
            _logger.info("Stream ended")
            return None
        return decode_message(raw)

    async def close(self) -> None:
        if self._transport is not None and not self._closed:
            self._closed = True
            try:
                await self._transport.close()
            except (StreamConnectionError, OSError) as exc:
                _logger.warning("Error closing stream: %s", exc)

    async def __aenter__(self) -> StreamSession:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
