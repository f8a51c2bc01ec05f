"""Minimal capability set for the command-line front-end.

read_file has no side effects; write_file and run_command go through the
permission gate. Paths are resolved against a working directory and may
not escape it.
"""
from __future__ import annotations

import asyncio
import logging
import os
import shutil
from pathlib import Path
from typing import Any

from .capabilities import Capability, CapabilitySurface
from .errors import InvalidInputError
from .models import SideEffect

logger = logging.getLogger(__name__)

MAX_READ_BYTES = 200_000
MAX_OUTPUT_CHARS = 20_000


def _resolve(root: Path, raw: Any) -> Path:
    if not isinstance(raw, str) or not raw.strip():
        raise InvalidInputError("'path' must be a non-empty string")
    path = (root / raw).resolve()
    if path != root and root not in path.parents:
        raise InvalidInputError(f"Path escapes working directory: {raw}")
    return path


def _truncate(text: str) -> str:
    if len(text) <= MAX_OUTPUT_CHARS:
        return text
    return text[:MAX_OUTPUT_CHARS] + f"\n... ({len(text) - MAX_OUTPUT_CHARS} more chars)"


def build_builtin_capabilities(cwd: str | Path | None = None) -> CapabilitySurface:
    root = Path(cwd or os.getcwd()).resolve()

    async def read_file(args: dict[str, Any]) -> str:
        path = _resolve(root, args.get("path"))
        if not path.is_file():
            raise InvalidInputError(f"No such file: {args.get('path')}")
        data = await asyncio.to_thread(path.read_bytes)
        if len(data) > MAX_READ_BYTES:
            data = data[:MAX_READ_BYTES]
        return data.decode("utf-8", errors="replace")

    async def write_file(args: dict[str, Any]) -> str:
        path = _resolve(root, args.get("path"))
        content = args.get("content")
        if not isinstance(content, str):
            raise InvalidInputError("'content' must be a string")
        path.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(path.write_text, content, encoding="utf-8")
        logger.info("write_file wrote %d chars to %s", len(content), path)
        return f"Wrote {len(content)} characters to {path.relative_to(root)}"

    async def run_command(args: dict[str, Any]) -> dict[str, Any]:
        command = args.get("command")
        if not isinstance(command, str) or not command.strip():
            raise InvalidInputError("'command' must be a non-empty string")
        proc = await asyncio.create_subprocess_shell(
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(root),
            executable=shutil.which("bash") or None,
        )
        logger.info("run_command pid=%s cwd=%s command=%s", proc.pid, root, command[:180])
        try:
            stdout, stderr = await proc.communicate()
        except asyncio.CancelledError:
            proc.kill()
            await proc.wait()
            raise
        return {
            "exit_code": proc.returncode,
            "stdout": _truncate(stdout.decode(errors="replace")),
            "stderr": _truncate(stderr.decode(errors="replace")),
        }

    return CapabilitySurface([
        Capability(
            name="read_file",
            description="Read a UTF-8 text file relative to the working directory.",
            invoke=read_file,
            input_schema={
                "type": "object",
                "properties": {"path": {"type": "string"}},
                "required": ["path"],
            },
        ),
        Capability(
            name="write_file",
            description="Create or overwrite a text file relative to the working directory.",
            invoke=write_file,
            side_effect=SideEffect.FILE_WRITE,
            input_schema={
                "type": "object",
                "properties": {
                    "path": {"type": "string"},
                    "content": {"type": "string"},
                },
                "required": ["path", "content"],
            },
        ),
        Capability(
            name="run_command",
            description="Run a shell command in the working directory.",
            invoke=run_command,
            side_effect=SideEffect.COMMAND,
            input_schema={
                "type": "object",
                "properties": {"command": {"type": "string"}},
                "required": ["command"],
            },
        ),
    ])
