import pytest

from bioenroll.services.quality import QualityMetrics, QualityScorer, calculate_quality


def test_scores_reference_specimen():
    metrics = calculate_quality("AABBCCDD", "good")

    # base 80, length 8/50, clarity 3/8 steps, 4 distinct of 8
    assert metrics.data_length == 8
    assert metrics.clarity == pytest.approx(3.75)
    assert metrics.compression == pytest.approx(100.0)
    assert metrics.overall_score == pytest.approx(0.3 * 80 + 0.2 * 16 + 0.3 * 3.75 + 0.2 * 100)


def test_scoring_is_deterministic():
    first = calculate_quality("AABBCCDD", "good")
    for _ in range(5):
        assert calculate_quality("AABBCCDD", "good") == first


def test_device_hint_other_than_good_uses_lower_base():
    good = calculate_quality("AABBCCDD", "good")
    fair = calculate_quality("AABBCCDD", "fair")

    assert good.overall_score - fair.overall_score == pytest.approx(0.3 * 20)


def test_long_varied_specimen_scores_high():
    specimen = "".join(chr(33 + (i * 37) % 90) for i in range(200))

    metrics = calculate_quality(specimen, "good")

    assert metrics.clarity == 100.0
    assert metrics.overall_score <= 100.0
    assert metrics.overall_score > 70


def test_clarity_only_looks_at_first_hundred_codes():
    flat_head = "A" * 100
    assert calculate_quality(flat_head + "AZ" * 50).clarity == calculate_quality(flat_head).clarity == 0.0


def test_bytes_are_scored_by_value():
    as_text = calculate_quality("AABBCCDD", "good")
    as_bytes = calculate_quality(b"AABBCCDD", "good")

    assert as_bytes == as_text


def test_empty_specimen_returns_neutral_scores():
    metrics = calculate_quality("", "good")

    assert metrics == QualityMetrics(overall_score=50.0, clarity=50.0, compression=50.0, data_length=0)


def test_single_character_clarity_is_midpoint():
    metrics = calculate_quality("A", "good")

    assert metrics.clarity == 50.0
    assert metrics.compression == 100.0


def test_scorer_reports_each_failed_gate():
    scorer = QualityScorer(min_quality_score=70, min_compression_score=70)

    both = scorer.rejection_reasons(QualityMetrics(60.0, 50.0, 40.0, 10))
    quality_only = scorer.rejection_reasons(QualityMetrics(60.0, 50.0, 90.0, 10))
    compression_only = scorer.rejection_reasons(QualityMetrics(85.0, 50.0, 69.9, 10))

    assert len(both) == 2
    assert quality_only[0].startswith("quality")
    assert compression_only[0].startswith("compression")
    assert scorer.accepts(QualityMetrics(70.0, 50.0, 70.0, 10))
