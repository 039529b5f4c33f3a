"""
Async wrapper around OS networking tools (ip, iptables, tc, ping, ...).

Never raises: a missing binary, a timeout or a non-zero exit all come back as
a CommandResult so callers decide whether the failure matters.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Sequence, Optional

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    args: Sequence[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def command(self) -> str:
        return " ".join(self.args)


async def run_command(
    args: Sequence[str],
    timeout: float = 5.0,
    input_text: Optional[str] = None
) -> CommandResult:
    """Run a command without a shell and collect its output."""
    args = [str(a) for a in args]
    try:
        process = await asyncio.create_subprocess_exec(
            *args,
            stdin=asyncio.subprocess.PIPE if input_text is not None else None,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE
        )
    except (FileNotFoundError, PermissionError) as e:
        logger.debug(f"Command unavailable: {args[0]} ({e})")
        return CommandResult(args, 127, "", str(e))

    try:
        stdout, stderr = await asyncio.wait_for(
            process.communicate(input_text.encode() if input_text is not None else None),
            timeout=timeout
        )
    except asyncio.TimeoutError:
        try:
            process.kill()
        except ProcessLookupError:
            pass
        await process.wait()
        logger.warning(f"⏱️ Command timed out after {timeout}s: {' '.join(args)}")
        return CommandResult(args, -1, "", "Timeout")

    result = CommandResult(
        args,
        process.returncode,
        stdout.decode(errors="replace"),
        stderr.decode(errors="replace")
    )
    if not result.ok:
        logger.debug(f"Command failed ({result.returncode}): {result.command}: {result.stderr.strip()}")
    return result
