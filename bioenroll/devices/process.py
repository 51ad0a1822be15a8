import asyncio
import json
import logging
from contextlib import suppress
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Sequence

from bioenroll.devices.base import SdkError

logger = logging.getLogger(__name__)

# Helpers print whole templates on one line
STREAM_LIMIT = 16 * 1024 * 1024


@dataclass
class ProcessResult:
    returncode: int
    stdout: str
    stderr: str


async def _drain(stream: asyncio.StreamReader, sink: list, on_line: Optional[Callable[[str], Any]]):
    while True:
        raw = await stream.readline()
        if not raw:
            break
        line = raw.decode("utf-8", errors="replace")
        sink.append(line)
        if on_line and line.strip():
            outcome = on_line(line.rstrip("\r\n"))
            if asyncio.iscoroutine(outcome):
                await outcome


async def run_process(
    args: Sequence[str],
    timeout: Optional[float] = None,
    on_stderr_line: Optional[Callable[[str], Any]] = None,
    cwd: Optional[str] = None,
) -> ProcessResult:
    """
    Spawn a helper process and collect its output.

    stderr is streamed line by line to ``on_stderr_line`` while the process
    runs; stdout is collected whole. A process still running when collection
    stops (timeout, unreadable output, cancellation) is killed and reaped.
    """
    try:
        process = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
            limit=STREAM_LIMIT,
        )
    except OSError as e:
        raise SdkError(f"Failed to start executable: {e}") from e

    stdout_lines: list = []
    stderr_lines: list = []
    readers = asyncio.gather(
        _drain(process.stdout, stdout_lines, None),
        _drain(process.stderr, stderr_lines, on_stderr_line),
    )
    try:
        await asyncio.wait_for(readers, timeout=timeout)
        returncode = await process.wait()
    except asyncio.TimeoutError:
        raise SdkError(f"{args[0]} timed out after {timeout} seconds")
    except (ValueError, asyncio.LimitOverrunError, asyncio.IncompleteReadError) as e:
        raise SdkError(f"Failed to read output of {args[0]}: {e}") from e
    finally:
        readers.cancel()
        if process.returncode is None:
            with suppress(ProcessLookupError):
                process.kill()
            await process.wait()

    return ProcessResult(returncode, "".join(stdout_lines), "".join(stderr_lines))


def clean_output(output: str) -> str:
    cleaned = output.strip()
    if cleaned.startswith("\ufeff"):
        cleaned = cleaned[1:]
    return cleaned


def parse_json_object(output: str, take_last: bool = False) -> Dict[str, Any]:
    """
    Parse the JSON object a helper printed, ignoring a BOM and any log noise.

    With ``take_last`` the last line that opens an object is used, for helpers
    that print progress before their result.
    """
    cleaned = clean_output(output)
    if take_last:
        candidates = [line.strip() for line in cleaned.splitlines() if line.strip().startswith("{")]
        if candidates:
            cleaned = candidates[-1]
    else:
        start = cleaned.find("{")
        if start > 0:
            cleaned = cleaned[start:]

    try:
        result = json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise SdkError(f"Invalid JSON response: {e}") from e
    if not isinstance(result, dict):
        raise SdkError("Invalid JSON response: expected an object")
    return result
