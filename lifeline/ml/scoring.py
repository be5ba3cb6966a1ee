"""Shared classifier output container and score transforms."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import numpy as np


@dataclass(frozen=True)
class ClassScore:
    """Winning label plus the raw per-class scores it was chosen from."""

    label: str
    scores: List[float] = field(default_factory=list)
    confidence: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "label": self.label,
            "scores": [round(s, 6) for s in self.scores],
            "confidence": (
                round(self.confidence, 4) if self.confidence is not None else None
            ),
        }


def softmax(scores: np.ndarray) -> np.ndarray:
    """Numerically stable softmax over a 1-D score vector."""
    scores = np.asarray(scores, dtype=np.float64)
    if scores.size == 0:
        return scores
    shifted = scores - np.max(scores)
    exp = np.exp(shifted)
    return exp / exp.sum()


def argmax_label(scores: np.ndarray, labels: List[str]) -> ClassScore:
    """
    Pick the best label; ties go to the first class in label order.

    Confidence is the softmax probability of the winning class.
    """
    scores = np.asarray(scores, dtype=np.float64)
    best = int(np.argmax(scores))
    probs = softmax(scores)
    return ClassScore(
        label=labels[best],
        scores=[float(s) for s in scores],
        confidence=float(probs[best]),
    )
