"""Transport that spawns an MCP server process and talks over its stdin/stdout."""

from __future__ import annotations

import logging
import os
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Literal, TextIO

import anyio
import anyio.lowlevel
from anyio.abc import Process
from anyio.streams.stapled import StapledByteStream
from anyio.streams.text import TextReceiveStream
from pydantic import BaseModel, Field

from mcp_client.exceptions import TransportError
from mcp_client.transport.stream import ByteStreamTransport

logger = logging.getLogger(__name__)

# Environment variables to inherit by default
DEFAULT_INHERITED_ENV_VARS = (
    [
        "APPDATA",
        "HOMEDRIVE",
        "HOMEPATH",
        "LOCALAPPDATA",
        "PATH",
        "PATHEXT",
        "PROCESSOR_ARCHITECTURE",
        "SYSTEMDRIVE",
        "SYSTEMROOT",
        "TEMP",
        "USERNAME",
        "USERPROFILE",
    ]
    if sys.platform == "win32"
    else ["HOME", "LOGNAME", "PATH", "SHELL", "TERM", "USER"]
)

# Timeout for process termination before falling back to force kill
PROCESS_TERMINATION_TIMEOUT = 2.0


def get_default_environment() -> dict[str, str]:
    """
    Returns a default environment object including only environment variables deemed
    safe to inherit.
    """
    env: dict[str, str] = {}

    for key in DEFAULT_INHERITED_ENV_VARS:
        value = os.environ.get(key)
        if value is None:
            continue

        if value.startswith("()"):
            # Skip functions, which are a security risk
            continue

        env[key] = value

    return env


class StdioServerParameters(BaseModel):
    command: str
    """The executable to run to start the server."""

    args: list[str] = Field(default_factory=list)
    """Command line arguments to pass to the executable."""

    env: dict[str, str] | None = None
    """
    Extra environment variables for the process, merged over
    get_default_environment().
    """

    cwd: str | Path | None = None
    """The working directory to use when spawning the process."""

    encoding: str = "utf-8"
    """The text encoding used for the server's stderr output."""

    encoding_error_handler: Literal["strict", "ignore", "replace"] = "replace"


class StdioTransport(ByteStreamTransport):
    """Line-delimited transport bound to a child process.

    Closing the transport closes the process's stdin, waits for it to exit
    and terminates it if it does not.
    """

    def __init__(self, process: Process) -> None:
        assert process.stdin and process.stdout, "Opened process is missing stdin or stdout"
        super().__init__(StapledByteStream(process.stdin, process.stdout))
        self.process = process

    async def aclose(self) -> None:
        if self._closed:
            return
        await super().aclose()
        try:
            with anyio.fail_after(PROCESS_TERMINATION_TIMEOUT):
                await self.process.wait()
        except TimeoutError:
            logger.warning(f"Server process {self.process.pid} did not exit, terminating")
            self.process.terminate()
            try:
                with anyio.fail_after(PROCESS_TERMINATION_TIMEOUT):
                    await self.process.wait()
            except TimeoutError:
                self.process.kill()
        except ProcessLookupError:
            pass
        await self.process.aclose()


async def _stderr_reader(process: Process, errlog: TextIO, encoding: str, encoding_error_handler: str) -> None:
    """Forward the server's stderr, line by line."""
    if not process.stderr:
        return

    try:
        buffer = ""
        async for chunk in TextReceiveStream(process.stderr, encoding=encoding, errors=encoding_error_handler):
            lines = (buffer + chunk).split("\n")
            buffer = lines.pop()
            for line in lines:
                if line.strip():
                    print(line, file=errlog)
        if buffer.strip():
            print(buffer, file=errlog)
    except (anyio.ClosedResourceError, anyio.BrokenResourceError):
        await anyio.lowlevel.checkpoint()


@asynccontextmanager
async def stdio_transport(
    server: StdioServerParameters, errlog: TextIO = sys.stderr
) -> AsyncIterator[StdioTransport]:
    """
    Spawn a server process and yield a transport connected to its stdin/stdout.

    The server's stderr is forwarded to ``errlog``. The process is shut down
    when the context exits.

    Raises:
        TransportError: if the process cannot be started
    """
    env = {**get_default_environment(), **server.env} if server.env is not None else get_default_environment()
    try:
        process = await anyio.open_process([server.command, *server.args], env=env, cwd=server.cwd)
    except OSError as exc:
        raise TransportError(f"Failed to start server process {server.command!r}: {exc}") from exc
    logger.info(f"Started server process {process.pid}: {server.command}")

    transport = StdioTransport(process)
    async with anyio.create_task_group() as tg:
        tg.start_soon(_stderr_reader, process, errlog, server.encoding, server.encoding_error_handler)
        try:
            yield transport
        finally:
            with anyio.CancelScope(shield=True):
                await transport.aclose()
            tg.cancel_scope.cancel()
