"""Cancellable subprocess execution for ffmpeg and ffprobe."""

from __future__ import annotations

import asyncio
import logging

from reelcraft.errors import MuxError

logger = logging.getLogger(__name__)


async def run_process(cmd: list[str], label: str = "") -> str:
    """Run ``cmd`` and return its stdout.

    The child is killed if the awaiting task is cancelled.

    Raises:
        MuxError: If the binary is missing or exits with a non-zero status.
    """
    label = label or cmd[0]
    logger.debug("Running %s: %s", label, " ".join(cmd))
    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError as exc:
        raise MuxError(f"{label}: executable not found: {cmd[0]}") from exc

    try:
        stdout, stderr = await proc.communicate()
    except asyncio.CancelledError:
        if proc.returncode is None:
            proc.kill()
            await proc.wait()
        raise

    if proc.returncode != 0:
        err = stderr.decode("utf-8", errors="replace")
        raise MuxError(
            f"{label} failed (exit {proc.returncode}): {err[-500:]}",
            returncode=proc.returncode,
            stderr=err,
        )
    return stdout.decode("utf-8", errors="replace")
