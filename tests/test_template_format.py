import base64
import json
from datetime import datetime, timezone

from bioenroll.services.quality import QualityMetrics
from bioenroll.services.template_format import (
    build_secure_template,
    decode_template,
    encode_template,
    iso_timestamp,
    to_base64,
)

from conftest import hardware_capture

ENROLLED_AT = datetime(2025, 3, 7, 9, 15, 30, 123456, tzinfo=timezone.utc)


def build(**capture_overrides):
    capture = hardware_capture("ridge-data-xyz", **capture_overrides)
    metrics = QualityMetrics(overall_score=88.5, clarity=100.0, compression=92.0, data_length=14)
    return build_secure_template(capture, capture.capture_data, metrics, 2, 3, enrolled_at=ENROLLED_AT)


def test_iso_timestamp_has_millisecond_precision():
    assert iso_timestamp(ENROLLED_AT) == "2025-03-07T09:15:30.123Z"


def test_template_field_order_and_values():
    template = build()

    assert list(template) == [
        "Header", "Version", "TemplateType", "SecurityLevel", "ProcessedBy",
        "EnrollmentDate", "DeviceName", "IsNative", "SpecimenNumber", "AttemptNumber",
        "Data", "DataStable", "TemplateId", "TemplateIdStable",
        "QualityScore", "Clarity", "Compression", "Compatibility",
    ]
    assert template["Header"] == "DigitalPersona_Secure"
    assert template["Version"] == 2
    assert template["TemplateType"] == "BIOMETRIC_SECURE"
    assert template["SecurityLevel"] == "hardware_biometric"
    assert template["SpecimenNumber"] == 2
    assert template["AttemptNumber"] == 3
    assert template["Data"] == template["DataStable"] == "ridge-data-xyz"
    assert template["TemplateId"] == template["TemplateIdStable"] == "tpl-1234567890abcdef"


def test_compatibility_block_carries_legacy_hints():
    compatibility = build()["Compatibility"]

    assert compatibility == {
        "Modes": ["stable_v2", "legacy_v1_hint"],
        "LegacyHints": {
            "EnrollmentDateYMD": "20250307",
            "DataLength": 14,
            "TemplateIdPrefix8": "tpl-1234",
        },
    }


def test_optional_secure_fields_are_kept_when_reported():
    template = build(encrypted_template="ENC", nonce="N0NCE", liveness_data={"score": 0.98})

    assert template["EncryptedTemplate"] == "ENC"
    assert template["Nonce"] == "N0NCE"
    assert template["LivenessData"] == {"score": 0.98}


def test_missing_template_id_gives_empty_prefix():
    template = build(template_id=None)

    assert "TemplateId" not in template
    assert template["Compatibility"]["LegacyHints"]["TemplateIdPrefix8"] == ""


def test_encoding_is_compact_json_with_integral_scores():
    blob = encode_template(build())
    text = blob.decode("utf-8")

    assert " " not in text.replace("DigitalPersona Real SDK with Security", "").replace("U.are.U 4500", "")
    assert '"Clarity":100,' in text
    assert '"QualityScore":88.5,' in text
    assert decode_template(blob) == json.loads(text)
    assert base64.b64decode(to_base64(blob)) == blob
