"""Bridge server: lets the container run host-defined commands by name.

Exposes a single endpoint on 127.0.0.1:<bridge.port>:

    POST /triggers/{name}

200 with ``{exit_code, stdout, stderr}`` when the trigger ran (whatever its
exit code), 400 with the same shape, all null, for an unknown trigger, and
500 when the command could not be spawned. The trigger map is read-only
after startup.
"""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any

from aiohttp import web

from .constants import BRIDGE_HOST, TRIGGER_SHELL
from .logging import get_logger

logger = get_logger(__name__)

triggers_key: web.AppKey[Mapping[str, str]] = web.AppKey("triggers", t=Mapping)

EMPTY_RESULT: dict[str, Any] = {"exit_code": None, "stdout": None, "stderr": None}


async def run_trigger(command: str) -> dict[str, Any]:
    """Run command through the shell with stdin closed and capture its output.

    Raises:
        OSError: If the shell cannot be spawned.
    """
    proc = await asyncio.create_subprocess_exec(
        TRIGGER_SHELL,
        "-c",
        command,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, stderr = await proc.communicate()
    returncode = proc.returncode
    return {
        # Killed by a signal: no exit code
        "exit_code": returncode if returncode is not None and returncode >= 0 else None,
        "stdout": stdout.decode("utf-8", errors="replace"),
        "stderr": stderr.decode("utf-8", errors="replace"),
    }


async def _handle_trigger(request: web.Request) -> web.Response:
    name = request.match_info["name"]
    command = request.app[triggers_key].get(name)
    if command is None:
        logger.warning("Unknown trigger %s", name)
        return web.json_response(EMPTY_RESULT, status=400)

    logger.info("Executing trigger %s: %s", name, command)
    try:
        result = await run_trigger(command)
    except OSError as e:
        logger.error("Failed to spawn trigger %s: %s", name, e)
        return web.json_response(EMPTY_RESULT, status=500)

    logger.debug("Trigger %s exited with %s", name, result["exit_code"])
    return web.json_response(result)


def create_app(triggers: Mapping[str, str]) -> web.Application:
    """Create the bridge application for a fixed trigger map."""
    app = web.Application()
    app[triggers_key] = MappingProxyType(dict(triggers))
    app.router.add_post("/triggers/{name}", _handle_trigger)
    return app


def serve(port: int, triggers: Mapping[str, str], host: str = BRIDGE_HOST) -> None:
    """Serve the bridge until interrupted."""
    logger.info("Bridge server listening on %s:%d (%d triggers)", host, port, len(triggers))
    web.run_app(create_app(triggers), host=host, port=port, print=None)
