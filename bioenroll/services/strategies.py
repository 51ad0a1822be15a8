"""
Enrollment strategies.

``GuiDelegatedStrategy`` hands the whole multi-sample capture to the SDK's
own enrollment control and is the default. ``SelfDrivenStrategy`` runs the
capture loop and quality gate here; it is the fallback when the GUI helper
is not available.
"""
import asyncio
import logging
from typing import Awaitable, Callable, Optional

from bioenroll.config import Settings
from bioenroll.devices.base import CaptureDevice, HARDWARE_BIOMETRIC, SdkError
from bioenroll.services import sessions
from bioenroll.services.quality import QualityScorer
from bioenroll.services.sessions import EnrollmentSession, Specimen
from bioenroll.services.template_format import build_secure_template, encode_template, to_base64

logger = logging.getLogger(__name__)

# The SDK enforces its own quality on the GUI path
GUI_QUALITY_SCORE = 95

MISMATCH_POLICIES = ("accept", "flag", "reject")

Publish = Callable[[EnrollmentSession], None]
Sleep = Callable[[float], Awaitable[None]]


class EnrollmentStrategy:
    name = "base"

    async def run(self, session: EnrollmentSession, device: CaptureDevice, publish: Publish) -> None:
        raise NotImplementedError


class GuiDelegatedStrategy(EnrollmentStrategy):
    name = "gui"

    def __init__(self, mismatch_policy: str = "flag"):
        if mismatch_policy not in MISMATCH_POLICIES:
            raise ValueError(f"Unknown finger mismatch policy: {mismatch_policy}")
        self.mismatch_policy = mismatch_policy

    async def run(self, session: EnrollmentSession, device: CaptureDevice, publish: Publish) -> None:
        session.transition(sessions.CAPTURING)
        publish(session)

        def on_progress(event: str, attempt: int, quality: Optional[int]):
            if session.is_terminal:
                return
            if event == "attempt_start":
                session.current_specimen = attempt
                session.transition(sessions.capturing_attempt(attempt))
            elif event == "attempt_complete":
                if quality is not None:
                    session.quality_scores.append(quality)
                session.transition(sessions.attempt_complete(attempt))
            publish(session)

        result = await device.enroll_fingerprint(
            session.user_id, session.requested_finger, session.user_name, on_progress
        )

        detected = result.detected_finger if result.detected_finger is not None else result.finger_id
        session.detected_finger = detected
        if detected is not None and detected != session.requested_finger:
            logger.warning(
                f"Enrollment {session.enrollment_id}: SDK detected finger {detected}, "
                f"requested {session.requested_finger} (policy: {self.mismatch_policy})"
            )
            if self.mismatch_policy == "reject":
                raise SdkError(
                    f"Detected finger {detected} does not match requested finger {session.requested_finger}"
                )
            if self.mismatch_policy == "accept":
                session.finger_id = detected
            else:
                session.finger_mismatch = True

        total = session.total_specimens
        session.template_base64 = result.template_base64
        session.template_size = result.template_size
        session.current_specimen = total
        session.samples_collected = total
        session.quality_scores = [GUI_QUALITY_SCORE] * total
        session.avg_quality = GUI_QUALITY_SCORE
        session.result = {
            "success": True,
            "method": result.method,
            "message": result.message or "Fingerprint enrolled successfully",
        }
        session.transition(sessions.COMPLETE)
        publish(session)
        logger.info(
            f"Enrollment {session.enrollment_id} complete: template size {session.template_size}, "
            f"detected finger {detected}, requested finger {session.requested_finger}"
        )


class SelfDrivenStrategy(EnrollmentStrategy):
    """
    Capture-loop enrollment with local quality gating.

    Each of the required specimens gets a bounded number of attempts; a
    specimen that cannot be captured aborts the whole enrollment. The best
    scoring specimen becomes the stored template.
    """

    name = "self_driven"

    def __init__(
        self,
        scorer: QualityScorer,
        required_specimens: int = 3,
        max_attempts: int = 5,
        no_finger_delay: float = 2.0,
        retry_delay: float = 2.0,
        specimen_delay: float = 3.0,
        sleep: Sleep = asyncio.sleep,
    ):
        self.scorer = scorer
        self.required_specimens = required_specimens
        self.max_attempts = max_attempts
        self.no_finger_delay = no_finger_delay
        self.retry_delay = retry_delay
        self.specimen_delay = specimen_delay
        self.sleep = sleep

    async def run(self, session: EnrollmentSession, device: CaptureDevice, publish: Publish) -> None:
        session.total_specimens = self.required_specimens
        session.transition(sessions.CAPTURING)
        publish(session)

        try:
            await device.initialize()
        except Exception as e:
            raise SdkError(f"Failed to initialize DigitalPersona SDK for enrollment: {e}") from e

        try:
            for index in range(1, self.required_specimens + 1):
                session.current_specimen = index
                session.transition(sessions.capturing_specimen(index))
                publish(session)

                specimen = await self.capture_specimen(session, device, index)
                session.specimens.append(specimen)
                session.quality_scores.append(specimen.quality_score)
                session.transition(sessions.specimen_captured(index))
                publish(session)

                if index < self.required_specimens:
                    await self.sleep(self.specimen_delay)
        finally:
            try:
                await device.cleanup()
            except Exception as e:
                logger.warning(f"SDK cleanup warning: {e}")

        if len(session.specimens) < self.required_specimens:
            raise SdkError(
                f"Incomplete enrollment: only {len(session.specimens)} specimens captured, "
                f"but {self.required_specimens} are required. Enrollment cancelled - no data saved."
            )

        best = select_best_specimen(session.specimens)
        blob = encode_template(best.template)

        session.template_base64 = to_base64(blob)
        session.template_size = len(blob)
        session.samples_collected = len(session.specimens)
        session.avg_quality = sum(session.quality_scores) / len(session.quality_scores)
        session.result = {
            "success": True,
            "message": (
                f"Successfully enrolled all {self.required_specimens} fingerprint specimens "
                "with quality checking"
            ),
            "specimensEnrolled": len(session.specimens),
            "requiredSpecimens": self.required_specimens,
            "qualityScores": list(session.quality_scores),
            "bestQualityScore": best.quality_score,
            "bestSpecimenNumber": best.specimen_number,
            "deviceName": best.device_name,
            "isNative": best.is_native,
            "enrollmentMethod": f"{self.required_specimens}-specimen quality-checked",
            "allSpecimens": [s.summary() for s in session.specimens],
        }
        session.transition(sessions.COMPLETE)
        publish(session)
        logger.info(
            f"Enrollment {session.enrollment_id} complete: best specimen {best.specimen_number} "
            f"with quality {best.quality_score:.1f}"
        )

    async def capture_specimen(self, session: EnrollmentSession, device: CaptureDevice, index: int) -> Specimen:
        for attempt in range(1, self.max_attempts + 1):
            prefix = f"Enrollment {session.enrollment_id} specimen {index} attempt {attempt}/{self.max_attempts}"
            delay = self.retry_delay
            try:
                capture = await device.capture_fingerprint()

                if capture.no_finger:
                    logger.info(f"{prefix}: no finger detected")
                    delay = self.no_finger_delay
                elif not capture.succeeded:
                    logger.warning(f"{prefix}: capture failed ({capture.message or capture.status})")
                elif not capture.enrollment_eligible:
                    logger.warning(
                        f"{prefix}: rejected insecure capture (simulated={capture.is_simulated}, "
                        f"fallback={capture.is_fallback}, security level {capture.security_level!r}), "
                        f"{HARDWARE_BIOMETRIC} required"
                    )
                elif not capture.capture_data:
                    logger.warning(f"{prefix}: capture returned no fingerprint data")
                else:
                    metrics = self.scorer.score(capture.capture_data, capture.quality)
                    reasons = self.scorer.rejection_reasons(metrics)
                    if not reasons:
                        logger.info(f"{prefix}: accepted with quality {metrics.overall_score:.1f}")
                        return Specimen(
                            template=build_secure_template(
                                capture, capture.capture_data, metrics, index, attempt
                            ),
                            quality_score=metrics.overall_score,
                            specimen_number=index,
                            attempt_number=attempt,
                            device_name=capture.device_name,
                            is_native=capture.is_native,
                        )
                    logger.warning(f"{prefix}: rejected, {'; '.join(reasons)}")
            except Exception as e:
                logger.warning(f"{prefix}: device error: {e}")

            if attempt < self.max_attempts:
                await self.sleep(delay)

        raise SdkError(
            f"Failed to capture specimen {index} after {self.max_attempts} attempts. "
            "Please ensure good finger placement, pressure, and compression "
            f"(minimum {self.scorer.min_compression_score:.0f}%) and try again."
        )


def select_best_specimen(specimens):
    """Highest quality wins; the earlier capture wins a tie."""
    if not specimens:
        raise SdkError("No valid specimens captured")
    return sorted(specimens, key=lambda s: s.quality_score, reverse=True)[0]


def build_strategy(settings: Settings, sleep: Sleep = asyncio.sleep) -> EnrollmentStrategy:
    if settings.enrollment_strategy == "gui":
        return GuiDelegatedStrategy(settings.finger_mismatch_policy)
    if settings.enrollment_strategy == "self_driven":
        return SelfDrivenStrategy(
            QualityScorer(settings.min_quality_score, settings.min_compression_score),
            required_specimens=settings.required_specimens,
            max_attempts=settings.max_attempts_per_specimen,
            no_finger_delay=settings.no_finger_retry_delay,
            retry_delay=settings.attempt_retry_delay,
            specimen_delay=settings.specimen_delay,
            sleep=sleep,
        )
    raise ValueError(f"Unknown enrollment strategy: {settings.enrollment_strategy}")
