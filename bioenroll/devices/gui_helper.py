import asyncio
import logging
import re
from typing import Optional

from bioenroll.devices.base import EnrollError, EnrollOutcome, ProgressCallback, SdkError
from bioenroll.devices.process import parse_json_object, run_process

logger = logging.getLogger(__name__)

ATTEMPT_START = re.compile(r"ATTEMPT_(\d+)_START")
ATTEMPT_COMPLETE = re.compile(r"ATTEMPT_(\d+)_COMPLETE.*Quality:\s*(\d+)")


def _as_int(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_progress_line(line: str):
    """Return (event, attempt, quality) for a helper progress marker, else None."""
    match = ATTEMPT_COMPLETE.search(line)
    if match:
        return "attempt_complete", int(match.group(1)), int(match.group(2))
    match = ATTEMPT_START.search(line)
    if match:
        return "attempt_start", int(match.group(1)), None
    return None


class GuiEnrollmentHelper:
    """
    BiometricHelper executable hosting the SDK's own enrollment control.

    The helper collects all samples and checks their quality itself; from
    here the call is a single request that yields a finished template.
    """

    def __init__(self, executable: str, timeout: Optional[float] = 120.0):
        self.executable = executable
        self.timeout = timeout

    async def enroll_fingerprint(
        self,
        user_id: int,
        finger_id: int,
        name: str,
        on_progress: Optional[ProgressCallback] = None,
    ) -> EnrollOutcome:
        logger.info(f"Starting GUI enrollment for user {user_id}, finger {finger_id}")

        async def handle_stderr(line: str):
            logger.info(f"BiometricHelper: {line.strip()}")
            event = parse_progress_line(line)
            if event and on_progress:
                outcome = on_progress(*event)
                if asyncio.iscoroutine(outcome):
                    await outcome

        try:
            result = await run_process(
                [self.executable, "enroll", str(user_id), str(finger_id), name],
                timeout=self.timeout,
                on_stderr_line=handle_stderr,
            )
        except SdkError as e:
            raise EnrollError(str(e)) from e

        logger.info(f"BiometricHelper exited with code {result.returncode}")

        if result.returncode != 0 or not result.stdout.strip():
            raise EnrollError(result.stderr.strip() or "Enrollment process failed")

        try:
            payload = parse_json_object(result.stdout, take_last=True)
        except SdkError as e:
            logger.error(f"Failed to parse helper result: {result.stdout.strip()}")
            raise EnrollError(str(e)) from e

        if not payload.get("success"):
            raise EnrollError(payload.get("message") or payload.get("error") or "Enrollment failed")

        template_base64 = payload.get("templateBase64")
        if not template_base64:
            raise EnrollError("Enrollment returned no template")

        outcome = EnrollOutcome(
            success=True,
            template_base64=template_base64,
            template_size=_as_int(payload.get("templateSize")) or 0,
            finger_id=_as_int(payload.get("fingerId")),
            detected_finger=_as_int(payload.get("detectedFinger")),
            requested_finger=_as_int(payload.get("requestedFingerId", finger_id)),
            method=payload.get("method"),
            message=payload.get("message"),
        )
        logger.info(f"GUI enrollment successful, template size {outcome.template_size}, method {outcome.method}")
        return outcome
