import logging
from datetime import datetime, timezone
from typing import NoReturn

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from bioenroll.auth import require_auth
from bioenroll.core.exceptions import EnrollmentError
from bioenroll.database import get_db
from bioenroll.devices.base import SdkError
from bioenroll.schemas.enrollment import (
    CancelEnrollmentResponse,
    CapturedFingerprint,
    CaptureResponse,
    DeleteFingerResponse,
    DeviceInfo,
    EnrolledFinger,
    EnrollFingerRequest,
    EnrollmentProgressResponse,
    EnrollmentStartedResponse,
    EnrollmentStatusResponse,
    FingerAvailabilityResponse,
    HealthResponse,
    SaveEnrollmentRequest,
    SaveEnrollmentResponse,
)
from bioenroll.services.enrollment_service import EnrollmentRuntime, EnrollmentService
from bioenroll.services.sessions import EnrollmentSession, progress_message

logger = logging.getLogger(__name__)

router = APIRouter(responses={404: {"description": "Not found"}})
protected = [Depends(require_auth)]


def get_runtime(request: Request) -> EnrollmentRuntime:
    return request.app.state.enrollment


def get_service(
    db: AsyncSession = Depends(get_db),
    runtime: EnrollmentRuntime = Depends(get_runtime),
) -> EnrollmentService:
    return EnrollmentService(db, runtime)


def raise_http(error: EnrollmentError) -> NoReturn:
    raise HTTPException(
        status_code=error.status_code,
        detail={"success": False, "message": error.message, **error.details},
    )


def server_error(message: str, error: Exception) -> HTTPException:
    logger.error(f"{message}: {error}")
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"success": False, "message": message, "error": str(error)},
    )


def progress_response(session: EnrollmentSession) -> EnrollmentProgressResponse:
    return EnrollmentProgressResponse(
        enrollment_id=session.enrollment_id,
        user_id=session.user_id,
        finger_id=session.finger_id,
        detected_finger=session.detected_finger,
        requested_finger=session.requested_finger,
        finger_mismatch=session.finger_mismatch,
        user_name=session.user_name,
        status=session.status,
        current_specimen=session.current_specimen,
        total_specimens=session.total_specimens,
        quality_scores=list(session.quality_scores),
        samples_collected=session.samples_collected,
        avg_quality=session.avg_quality,
        template_size=session.template_size,
        template_base64=session.template_base64,
        start_time=session.start_time,
        last_update=session.last_update,
        error=session.error,
        result=session.result,
        message=progress_message(session.status, session.current_specimen, session.total_specimens),
    )


@router.get("/health", status_code=status.HTTP_200_OK)
async def health_check(runtime: EnrollmentRuntime = Depends(get_runtime)) -> HealthResponse:
    """Probe SDK initialization and device enumeration (no auth required)"""
    report = await runtime.health()
    device = report.device
    return HealthResponse(
        success=True,
        message="Bio enrollment system is available",
        sdk_ready=report.sdk_ready,
        device_info=DeviceInfo(
            name=device.name,
            model=device.model,
            vendor=device.vendor,
            serial_number=device.serial_number,
            connected=device.connected,
        ) if device else None,
        timestamp=datetime.now(timezone.utc),
    )


@router.get("/check-finger/{user_id}/{finger_id}", dependencies=protected)
async def check_finger_availability(
    user_id: int, finger_id: int, service: EnrollmentService = Depends(get_service)
) -> FingerAvailabilityResponse:
    try:
        availability = await service.check_finger(user_id, finger_id)
    except EnrollmentError as e:
        raise_http(e)
    except Exception as e:
        raise server_error("Failed to check finger availability", e)

    return FingerAvailabilityResponse(
        available=availability.available,
        message=availability.message,
        existing_template=availability.existing_template,
        has_valid_data=availability.has_valid_data,
        fuid=availability.fuid,
        created_date=availability.created_date,
    )


@router.post("/capture-fingerprint", dependencies=protected)
async def capture_fingerprint(runtime: EnrollmentRuntime = Depends(get_runtime)) -> CaptureResponse:
    """Single ad-hoc capture, not an enrollment"""
    try:
        capture = await runtime.capture_fingerprint()
    except EnrollmentError as e:
        raise_http(e)
    except SdkError as e:
        raise server_error("Fingerprint capture failed", e)

    return CaptureResponse(
        success=True,
        message="Fingerprint captured successfully for enrollment",
        fingerprint_data=CapturedFingerprint(
            capture_data=capture.capture_data,
            device_name=capture.device_name,
            quality=capture.quality,
            is_native=capture.is_native,
            timestamp=capture.timestamp,
        ),
    )


@router.post("/enroll-finger", dependencies=protected)
async def enroll_finger(
    body: EnrollFingerRequest, service: EnrollmentService = Depends(get_service)
) -> EnrollmentStartedResponse:
    """Start an enrollment; progress is polled through /enrollment-progress"""
    try:
        session = await service.start_enrollment(body.user_id, body.finger_id, body.name)
    except EnrollmentError as e:
        raise_http(e)
    except Exception as e:
        raise server_error("Enrollment failed", e)

    return EnrollmentStartedResponse(
        enrollment_id=session.enrollment_id,
        user_id=session.user_id,
        finger_id=session.finger_id,
    )


@router.post("/save-enrollment", dependencies=protected)
async def save_enrollment(
    body: SaveEnrollmentRequest, service: EnrollmentService = Depends(get_service)
) -> SaveEnrollmentResponse:
    try:
        saved = await service.save_enrollment(body)
    except EnrollmentError as e:
        raise_http(e)
    except Exception as e:
        raise server_error("Failed to save enrollment", e)

    template = saved.template
    return SaveEnrollmentResponse(
        user_id=template.user_id,
        finger_id=template.finger_id,
        name=template.name,
        fuid=template.fuid,
        samples_collected=saved.samples_collected,
        avg_quality=saved.avg_quality,
        template_size=saved.template_size,
        timestamp=datetime.now(timezone.utc),
    )


@router.get("/enrollment-progress/{enrollment_id}", dependencies=protected)
async def get_enrollment_progress(
    enrollment_id: str, runtime: EnrollmentRuntime = Depends(get_runtime)
) -> EnrollmentProgressResponse:
    try:
        session = runtime.get_session(enrollment_id)
    except EnrollmentError as e:
        raise_http(e)
    return progress_response(session)


@router.delete("/enrollment-progress/{enrollment_id}", dependencies=protected)
async def cancel_enrollment(
    enrollment_id: str, runtime: EnrollmentRuntime = Depends(get_runtime)
) -> CancelEnrollmentResponse:
    try:
        session = runtime.cancel(enrollment_id)
    except EnrollmentError as e:
        raise_http(e)
    return CancelEnrollmentResponse(
        message=progress_message(session.status, session.current_specimen, session.total_specimens),
        enrollment_id=session.enrollment_id,
        status=session.status,
    )


@router.get("/enrollment-status/{user_id}", dependencies=protected)
async def get_enrollment_status(
    user_id: int, service: EnrollmentService = Depends(get_service)
) -> EnrollmentStatusResponse:
    try:
        templates = await service.list_enrolled(user_id)
    except Exception as e:
        raise server_error("Failed to fetch enrollment status", e)

    fingers = [
        EnrolledFinger(
            fuid=t.fuid,
            finger_id=t.finger_id,
            name=t.name,
            template_size=t.template_size,
            image_size=t.image_size,
            created_date=t.created_date,
        )
        for t in templates
    ]
    return EnrollmentStatusResponse(user_id=user_id, enrolled_fingers=fingers, total_enrolled=len(fingers))


@router.delete("/delete-finger/{user_id}/{finger_id}", dependencies=protected)
async def delete_enrolled_finger(
    user_id: int, finger_id: int, service: EnrollmentService = Depends(get_service)
) -> DeleteFingerResponse:
    try:
        deleted = await service.delete_finger(user_id, finger_id)
    except EnrollmentError as e:
        raise_http(e)
    except Exception as e:
        raise server_error("Failed to delete finger", e)

    return DeleteFingerResponse(
        message=f"Finger {finger_id} deleted for user {user_id}",
        rows_affected=deleted,
    )
