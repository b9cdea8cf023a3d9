"""Classification result and the confidence policy of the submission gate."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

from greensnap.errors import LowConfidence, NotWaste

_NEGATED_WASTE = re.compile(r"\b(non|not|no)[\s_-]*waste")


def label_indicates_waste(label: str) -> bool:
    """Case-insensitive "waste" match that ignores negated labels like "Non-Waste"."""
    text = label.lower()
    return "waste" in text and not _NEGATED_WASTE.search(text)


class Verification(Enum):
    UNVERIFIED = "unverified"
    MEDIUM_CONFIDENCE = "medium_confidence"
    HIGH_CONFIDENCE = "high_confidence"


@dataclass(frozen=True)
class ClassificationPolicy:
    """Asymmetric thresholds for trusting a waste / non-waste verdict.

    A waste verdict is trusted from ``waste_accept``; a non-waste verdict only
    from ``non_waste_reject``. Anything below its threshold is low confidence.
    """

    waste_accept: float = 0.65
    non_waste_reject: float = 0.75
    high_confidence: float = 0.85

    def verification_for(self, is_waste: bool, confidence: float) -> Verification:
        if is_waste and confidence >= self.high_confidence:
            return Verification.HIGH_CONFIDENCE
        if is_waste and confidence >= self.waste_accept:
            return Verification.MEDIUM_CONFIDENCE
        return Verification.UNVERIFIED

    def enforce(self, result: ClassificationResult) -> None:
        """Raise NotWaste or LowConfidence unless the result admits a report."""
        if result.is_waste:
            if result.confidence < self.waste_accept:
                raise LowConfidence(result)
            return
        if result.confidence < self.non_waste_reject:
            raise LowConfidence(result)
        raise NotWaste(result)


@dataclass(frozen=True)
class ClassificationResult:
    label: str
    confidence: float
    verification: Verification
    model_version: str

    @classmethod
    def from_prediction(
        cls,
        label: str,
        confidence: float,
        model_version: str,
        policy: ClassificationPolicy | None = None,
    ) -> ClassificationResult:
        policy = policy or ClassificationPolicy()
        return cls(
            label=label,
            confidence=confidence,
            verification=policy.verification_for(label_indicates_waste(label), confidence),
            model_version=model_version,
        )

    @property
    def is_waste(self) -> bool:
        return label_indicates_waste(self.label)

    def to_dict(self) -> dict:
        return {
            "label": self.label,
            "confidence": self.confidence,
            "isWaste": self.is_waste,
            "verification": self.verification.value,
            "modelVersion": self.model_version,
        }
