"""Newline-delimited JSON-RPC over the process's stdin/stdout.

stdout carries protocol messages only. Pipes, sockets and terminals are read
through an asyncio pipe transport, so a pending read is cancellable at
shutdown; stdin that cannot be polled (a regular file, ``/dev/null``) is
read line by line in a worker thread.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import stat
import sys
from collections.abc import Awaitable, Callable
from typing import Any, BinaryIO

from mcp import types
from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

# Generous per-line limit; calendar-data payloads can be large.
_READ_LIMIT = 16 * 1024 * 1024

MessageHandler = Callable[[types.JSONRPCMessage], Awaitable[types.JSONRPCMessage | None]]
OutboundMessage = types.JSONRPCMessage | dict[str, Any]


def _error_payload(request_id: Any, code: int, message: str) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}}


def encode_message(message: OutboundMessage) -> bytes:
    """Serialize one outbound message as a single JSON line.

    ``None`` values inside results are preserved; only an absent
    ``error.data`` is dropped.
    """
    if isinstance(message, BaseModel):
        payload = message.model_dump(by_alias=True, mode="json")
    else:
        payload = dict(message)
    error = payload.get("error")
    if isinstance(error, dict) and error.get("data") is None:
        payload["error"] = {key: value for key, value in error.items() if key != "data"}
    return (json.dumps(payload, ensure_ascii=False, separators=(",", ":")) + "\n").encode("utf-8")


def _is_pollable(stream: BinaryIO) -> bool:
    try:
        mode = os.fstat(stream.fileno()).st_mode
    except (OSError, ValueError):
        return False
    if stat.S_ISFIFO(mode) or stat.S_ISSOCK(mode):
        return True
    return stat.S_ISCHR(mode) and stream.isatty()


class StdioTransport:
    """One duplex line-oriented stream: stdin in, stdout out."""

    label = "stdio"

    def __init__(
        self,
        reader: asyncio.StreamReader | None = None,
        writer: BinaryIO | None = None,
    ) -> None:
        self._reader = reader
        self._writer = writer
        self._input: BinaryIO | None = None
        self._pipe_transport: asyncio.ReadTransport | None = None
        self._opened = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def open(self) -> None:
        """Attach to stdin/stdout unless streams were injected."""
        if self._opened:
            return
        self._opened = True
        if self._writer is None:
            self._writer = sys.stdout.buffer
        if self._reader is not None:
            return

        stdin = sys.stdin.buffer
        if _is_pollable(stdin):
            loop = asyncio.get_running_loop()
            reader = asyncio.StreamReader(limit=_READ_LIMIT)
            protocol = asyncio.StreamReaderProtocol(reader)
            self._pipe_transport, _ = await loop.connect_read_pipe(lambda: protocol, stdin)
            self._reader = reader
        else:
            logger.debug("stdin is not pollable; reading lines in a worker thread")
            self._input = stdin

    async def _readline(self) -> bytes:
        if self._reader is not None:
            return await self._reader.readline()
        assert self._input is not None
        return await asyncio.to_thread(self._input.readline)

    async def serve(self, handler: MessageHandler) -> None:
        """Read and answer messages one at a time until EOF or close()."""
        if not self._opened:
            await self.open()
        while not self._closed:
            try:
                line = await self._readline()
            except ValueError:
                logger.warning("Inbound line exceeds %d bytes; discarding", _READ_LIMIT)
                await self.send(_error_payload(None, types.PARSE_ERROR, "Parse error"))
                continue
            if not line:
                logger.info("stdin closed by client")
                return
            if not line.strip():
                continue
            response = await self._handle_line(line, handler)
            if response is not None:
                await self.send(response)

    async def _handle_line(self, line: bytes, handler: MessageHandler) -> OutboundMessage | None:
        try:
            payload = json.loads(line)
        except ValueError as exc:
            logger.warning("Unparseable message: %s", exc)
            return _error_payload(None, types.PARSE_ERROR, "Parse error")

        try:
            message = types.JSONRPCMessage.model_validate(payload)
        except ValidationError:
            request_id = payload.get("id") if isinstance(payload, dict) else None
            if not isinstance(request_id, str | int) or isinstance(request_id, bool):
                request_id = None
            logger.warning("Invalid JSON-RPC message (id=%s)", request_id)
            return _error_payload(request_id, types.INVALID_REQUEST, "Invalid Request")

        return await handler(message)

    async def send(self, message: OutboundMessage) -> None:
        if self._closed:
            logger.debug("Dropping outbound message; transport closed")
            return
        if self._writer is None:
            raise RuntimeError("Transport is not open")
        self._writer.write(encode_message(message))
        self._writer.flush()

    async def close(self) -> None:
        """Stop reading and release stdin. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        if self._pipe_transport is not None:
            self._pipe_transport.close()
            self._pipe_transport = None
        if self._writer is not None:
            try:
                self._writer.flush()
            except (OSError, ValueError):
                logger.debug("stdout flush failed during close", exc_info=True)
        logger.debug("Transport closed")
