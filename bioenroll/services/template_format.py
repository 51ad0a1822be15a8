"""
Secure biometric template blob.

The blob is the compact JSON of the structure below, UTF-8 encoded. Field
names, their order and the stable/legacy aliases are read by external
verifiers and must not change. Optional capture fields that the device did
not report are left out of the blob rather than written as null.
"""
import base64
import json
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from bioenroll.devices.base import CaptureOutcome
from bioenroll.services.quality import QualityMetrics

TEMPLATE_HEADER = "DigitalPersona_Secure"
TEMPLATE_VERSION = 2
TEMPLATE_TYPE = "BIOMETRIC_SECURE"
PROCESSED_BY = "DigitalPersona Real SDK with Security"
COMPATIBILITY_MODES = ["stable_v2", "legacy_v1_hint"]

_OPTIONAL_FIELDS = (
    "DeviceName",
    "TemplateId",
    "TemplateIdStable",
    "EncryptedTemplate",
    "Nonce",
    "LivenessData",
)


def iso_timestamp(moment: Optional[datetime] = None) -> str:
    """UTC timestamp with millisecond precision and a trailing Z."""
    moment = (moment or datetime.now(timezone.utc)).astimezone(timezone.utc)
    return moment.strftime("%Y-%m-%dT%H:%M:%S.") + f"{moment.microsecond // 1000:03d}Z"


def _number(value: float):
    """Integral floats are written as integers, matching JSON produced by the verifiers."""
    return int(value) if float(value).is_integer() else value


def build_secure_template(
    capture: CaptureOutcome,
    data: str,
    metrics: QualityMetrics,
    specimen_number: int,
    attempt_number: int,
    enrolled_at: Optional[datetime] = None,
) -> Dict[str, Any]:
    enrollment_date = iso_timestamp(enrolled_at)
    template_id = capture.template_id

    template = {
        # Stable (v2) fields
        "Header": TEMPLATE_HEADER,
        "Version": TEMPLATE_VERSION,
        "TemplateType": TEMPLATE_TYPE,
        "SecurityLevel": capture.security_level,
        "ProcessedBy": PROCESSED_BY,
        "EnrollmentDate": enrollment_date,
        "DeviceName": capture.device_name,
        "IsNative": bool(capture.is_native),
        "SpecimenNumber": specimen_number,
        "AttemptNumber": attempt_number,
        # Biometric payload
        "Data": data,
        "DataStable": data,
        "TemplateId": template_id,
        "TemplateIdStable": template_id,
        "EncryptedTemplate": capture.encrypted_template,
        "Nonce": capture.nonce,
        "LivenessData": capture.liveness_data,
        # Quality metrics
        "QualityScore": _number(metrics.overall_score),
        "Clarity": _number(metrics.clarity),
        "Compression": _number(metrics.compression),
        "Compatibility": {
            "Modes": list(COMPATIBILITY_MODES),
            "LegacyHints": {
                "EnrollmentDateYMD": enrollment_date[:10].replace("-", ""),
                "DataLength": len(data),
                "TemplateIdPrefix8": (template_id or "")[:8],
            },
        },
    }
    for field in _OPTIONAL_FIELDS:
        if template[field] is None:
            del template[field]
    return template


def encode_template(template: Dict[str, Any]) -> bytes:
    return json.dumps(template, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def decode_template(blob: bytes) -> Dict[str, Any]:
    return json.loads(blob.decode("utf-8"))


def to_base64(blob: bytes) -> str:
    return base64.b64encode(blob).decode()
