"""Unix domain socket server for daemon control."""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Awaitable, Callable, Optional

from .protocol import Command, Response, ResponseStatus, SimpleResponse

logger = logging.getLogger(__name__)

# Type alias for command handler
CommandHandler = Callable[[Command], Awaitable[Response]]


class IPCServer:
    """JSON-lines command server on a Unix socket.

    A client may send several commands on one connection; each gets one
    response line. The socket is owner-only (0600).
    """

    DEFAULT_SOCKET_PATH = "/run/user/{uid}/baton.sock"

    # Idle time allowed between commands; handling itself is not time-boxed
    # because a manual rotation can take a minute
    READ_TIMEOUT = 5.0

    def __init__(
        self,
        socket_path: Optional[str] = None,
        command_handler: Optional[CommandHandler] = None,
    ) -> None:
        self._socket_path = Path(socket_path or self.DEFAULT_SOCKET_PATH.format(uid=os.getuid()))
        self._command_handler = command_handler
        self._server: Optional[asyncio.AbstractServer] = None

    @property
    def socket_path(self) -> Path:
        return self._socket_path

    def set_handler(self, handler: CommandHandler) -> None:
        self._command_handler = handler

    async def _dispatch(self, raw: str) -> Response:
        """Decode one request line and run it through the handler."""
        try:
            command = Command.from_json(raw)
        except (json.JSONDecodeError, KeyError, ValueError) as e:
            return SimpleResponse(status=ResponseStatus.ERROR, message="Invalid command", error=str(e))

        if self._command_handler is None:
            return SimpleResponse(
                status=ResponseStatus.ERROR,
                message="No handler configured",
                error="Internal error",
            )

        logger.debug(f"IPC command: {command.type.value}")
        try:
            return await self._command_handler(command)
        except Exception as e:
            logger.error(f"Command {command.type.value} failed: {e}", exc_info=True)
            return SimpleResponse(status=ResponseStatus.ERROR, message="Command failed", error=str(e))

    async def _serve(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        while True:
            line = await asyncio.wait_for(reader.readline(), timeout=self.READ_TIMEOUT)
            if not line:
                return
            raw = line.decode(errors="replace").strip()
            if not raw:
                continue
            response = await self._dispatch(raw)
            writer.write(response.to_json().encode() + b"\n")
            await writer.drain()

    async def _handle_client(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        try:
            await self._serve(reader, writer)
        except asyncio.TimeoutError:
            logger.debug("IPC client idle, closing connection")
        except (ConnectionError, OSError) as e:
            logger.warning(f"IPC client connection error: {e}")
        finally:
            writer.close()
            try:
                await writer.wait_closed()
            except (ConnectionError, OSError):
                pass

    async def start(self) -> None:
        """Bind the socket, replacing a stale one from a previous run."""
        self._socket_path.parent.mkdir(parents=True, exist_ok=True)
        self._socket_path.unlink(missing_ok=True)

        self._server = await asyncio.start_unix_server(
            self._handle_client,
            path=str(self._socket_path),
        )
        os.chmod(self._socket_path, 0o600)
        logger.info(f"IPC server listening on {self._socket_path}")

    async def stop(self) -> None:
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
            self._server = None
        self._socket_path.unlink(missing_ok=True)
        logger.info("IPC server stopped")
