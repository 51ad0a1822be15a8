import logging
from dataclasses import asdict, dataclass
from typing import Union

import numpy as np

logger = logging.getLogger(__name__)

Specimen = Union[str, bytes, bytearray]

# Calibration constants of the legacy heuristic
REFERENCE_LENGTH = 50
CLARITY_WINDOW = 100
CLARITY_SCALE = 10
COMPRESSION_SCALE = 200
DEFAULT_SCORE = 50.0


@dataclass(frozen=True)
class QualityMetrics:
    overall_score: float
    clarity: float
    compression: float
    data_length: int

    def to_dict(self) -> dict:
        return asdict(self)


def _clamp(value: float) -> float:
    return float(min(100.0, max(0.0, value)))


def _codes(specimen: Specimen) -> np.ndarray:
    """Code points of a specimen: byte values for bytes, character codes for text."""
    if isinstance(specimen, (bytes, bytearray)):
        return np.frombuffer(bytes(specimen), dtype=np.uint8).astype(np.int64)
    return np.fromiter((ord(ch) for ch in specimen), dtype=np.int64, count=len(specimen))


def calculate_clarity(codes: np.ndarray) -> float:
    """Average absolute step between consecutive codes over the first 100 values."""
    window = min(len(codes), CLARITY_WINDOW)
    if window < 2:
        return DEFAULT_SCORE
    variation = np.abs(np.diff(codes[:window])).sum()
    avg_variation = variation / window
    return float(min(100.0, (avg_variation / CLARITY_SCALE) * 100))


def calculate_compression(codes: np.ndarray) -> float:
    """Distinct-value density of the specimen."""
    if len(codes) == 0:
        return DEFAULT_SCORE
    ratio = len(np.unique(codes)) / len(codes)
    return float(min(100.0, ratio * COMPRESSION_SCALE))


def calculate_quality(specimen: Specimen, device_quality: str = None) -> QualityMetrics:
    """
    Composite quality score of a captured specimen.

    Never raises: any failure yields the neutral score of 50 so the capture
    loop can still decide whether to retry.
    """
    try:
        if not specimen:
            raise ValueError("empty specimen")

        codes = _codes(specimen)
        data_length = len(codes)

        base_quality = 80 if device_quality == "good" else 60
        length_quality = min(100.0, (data_length / REFERENCE_LENGTH) * 100)
        clarity = calculate_clarity(codes)
        compression = calculate_compression(codes)

        overall = (
            base_quality * 0.3
            + length_quality * 0.2
            + clarity * 0.3
            + compression * 0.2
        )
        return QualityMetrics(
            overall_score=_clamp(overall),
            clarity=_clamp(clarity),
            compression=_clamp(compression),
            data_length=data_length,
        )
    except Exception as e:
        logger.warning(f"Quality calculation error: {e}")
        return QualityMetrics(
            overall_score=DEFAULT_SCORE,
            clarity=DEFAULT_SCORE,
            compression=DEFAULT_SCORE,
            data_length=len(specimen) if specimen else 0,
        )


class QualityScorer:
    """Scoring policy used by the self-driven enrollment loop."""

    def __init__(self, min_quality_score: float = 70.0, min_compression_score: float = 70.0):
        self.min_quality_score = min_quality_score
        self.min_compression_score = min_compression_score

    def score(self, specimen: Specimen, device_quality: str = None) -> QualityMetrics:
        return calculate_quality(specimen, device_quality)

    def rejection_reasons(self, metrics: QualityMetrics) -> list:
        """Failed gates for a specimen; empty when it is acceptable."""
        reasons = []
        if metrics.overall_score < self.min_quality_score:
            reasons.append(
                f"quality {metrics.overall_score:.1f} below minimum {self.min_quality_score:.0f}"
            )
        if metrics.compression < self.min_compression_score:
            reasons.append(
                f"compression {metrics.compression:.1f} below minimum {self.min_compression_score:.0f}"
            )
        return reasons

    def accepts(self, metrics: QualityMetrics) -> bool:
        return not self.rejection_reasons(metrics)
