"""
verdict.py — Map a detector result onto the user-facing classification.

Mapping, in priority order:
  provider AUTHENTIC                    → AUTHENTIC
  provider MANIPULATED, score ≥ 0.5     → DEEPFAKE
  provider MANIPULATED, score <  0.5    → SUSPICIOUS
  anything else                         → SUSPICIOUS

The persisted confidence score is the overall score on a 0–100 integer
scale, rounded half-up.

USAGE
─────
    from authentiscan.services.verdict import classify, confidence_score

    classify(ProviderStatus.MANIPULATED, 0.5)   # → Classification.DEEPFAKE
    confidence_score(0.125)                     # → 13
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from authentiscan.models.scan import Classification, ModelResult, ProviderStatus

DEEPFAKE_THRESHOLD = 0.5


def classify(provider_status: ProviderStatus | str, overall_score: float) -> Classification:
    """Deterministic (status, score) → classification."""
    if isinstance(provider_status, ProviderStatus):
        status = provider_status
    else:
        try:
            status = ProviderStatus(str(provider_status).strip().upper())
        except ValueError:
            return Classification.SUSPICIOUS

    if status is ProviderStatus.AUTHENTIC:
        return Classification.AUTHENTIC
    if status is ProviderStatus.MANIPULATED:
        if overall_score >= DEEPFAKE_THRESHOLD:
            return Classification.DEEPFAKE
        return Classification.SUSPICIOUS
    return Classification.SUSPICIOUS


def confidence_score(overall_score: float) -> int:
    """round(overall_score × 100) with halves rounded up, clamped to [0, 100]."""
    score = max(0.0, min(1.0, float(overall_score)))
    # Decimal from the shortest repr, so 0.285 rounds as written rather than as 28.4999...
    return int(Decimal(repr(score)).scaleb(2).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def feature_strings(models: list[ModelResult]) -> list[str]:
    """Compact "<model>:<status>:<0-100>" strings used by list views."""
    return [f"{m.name}:{m.status}:{confidence_score(m.score)}" for m in models]
