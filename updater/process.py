"""Running external commands."""

import asyncio
import logging
import os
from pathlib import Path

from .errors import CommandError

logger = logging.getLogger(__name__)


async def run(
    cmd: list[str],
    cwd: str | Path | None = None,
    env: dict[str, str] | None = None,
    timeout: float | None = None,
) -> tuple[int, str, str]:
    """Run a command and capture its output.

    Args:
        cmd: Command and arguments
        cwd: Working directory
        env: Extra environment variables, merged over the current environment
        timeout: Seconds before the command is killed

    Returns:
        Tuple of (returncode, stdout, stderr)
    """
    logger.debug("Running %s in %s", " ".join(cmd), cwd or os.getcwd())
    process_env = {**os.environ, **env} if env else None
    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            cwd=str(cwd) if cwd else None,
            env=process_env,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except FileNotFoundError:
        return 127, "", f"Command not found: {cmd[0]}"

    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        return 124, "", f"Command timed out after {timeout}s"
    except asyncio.CancelledError:
        # Kill the child so a cancelled run leaves nothing behind
        if process.returncode is None:
            process.kill()
            await process.wait()
        raise

    out = stdout.decode(errors="replace") if stdout else ""
    err = stderr.decode(errors="replace") if stderr else ""
    if process.returncode != 0:
        logger.debug("Exit code %s for %s: %s", process.returncode, cmd[0], (err or out).strip()[-500:])
    else:
        logger.debug("Exit code 0 for %s", cmd[0])
    return process.returncode, out, err


async def check_output(
    cmd: list[str],
    cwd: str | Path | None = None,
    env: dict[str, str] | None = None,
    timeout: float | None = None,
) -> str:
    """Run a command and return its stdout, raising CommandError on failure."""
    code, out, err = await run(cmd, cwd=cwd, env=env, timeout=timeout)
    if code != 0:
        raise CommandError(cmd, code, err or out)
    return out
