import pytest

from greensnap.errors import LowConfidence, NotWaste
from greensnap.models.classification import (
    ClassificationPolicy,
    ClassificationResult,
    Verification,
    label_indicates_waste,
)

policy = ClassificationPolicy()


def result(label, confidence):
    return ClassificationResult.from_prediction(label, confidence, "test-model", policy)


@pytest.mark.parametrize(
    "label, expected",
    [
        ("Waste", True),
        ("waste", True),
        ("Plastic Waste", True),
        ("Non-Waste", False),
        ("not waste", False),
        ("non_waste", False),
        ("Clean", False),
        ("", False),
    ],
)
def test_label_indicates_waste(label, expected):
    assert label_indicates_waste(label) is expected


def test_waste_at_threshold_is_accepted():
    policy.enforce(result("Waste", 0.65))


def test_waste_just_below_threshold_is_low_confidence():
    with pytest.raises(LowConfidence) as exc_info:
        policy.enforce(result("Waste", 0.649))
    assert exc_info.value.classification.confidence == 0.649
    assert exc_info.value.to_dict()["classification"]["label"] == "Waste"


def test_confident_non_waste_is_rejected():
    with pytest.raises(NotWaste) as exc_info:
        policy.enforce(result("Non-Waste", 0.75))
    assert exc_info.value.code == "NOT_WASTE"
    assert exc_info.value.to_dict()["classification"]["isWaste"] is False


def test_unsure_non_waste_is_low_confidence_not_rejection():
    with pytest.raises(LowConfidence):
        policy.enforce(result("Non-Waste", 0.74))


def test_thresholds_are_tunable():
    strict = ClassificationPolicy(waste_accept=0.9, non_waste_reject=0.5)
    with pytest.raises(LowConfidence):
        strict.enforce(result("Waste", 0.85))
    with pytest.raises(NotWaste):
        strict.enforce(result("Clean", 0.55))


@pytest.mark.parametrize(
    "label, confidence, tier",
    [
        ("Waste", 0.85, Verification.HIGH_CONFIDENCE),
        ("Waste", 0.84, Verification.MEDIUM_CONFIDENCE),
        ("Waste", 0.65, Verification.MEDIUM_CONFIDENCE),
        ("Waste", 0.64, Verification.UNVERIFIED),
        ("Non-Waste", 0.99, Verification.UNVERIFIED),
    ],
)
def test_verification_tier(label, confidence, tier):
    assert result(label, confidence).verification is tier


def test_result_serialization():
    data = result("Waste", 0.9).to_dict()
    assert data == {
        "label": "Waste",
        "confidence": 0.9,
        "isWaste": True,
        "verification": "high_confidence",
        "modelVersion": "test-model",
    }
