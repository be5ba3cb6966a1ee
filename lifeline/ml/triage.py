"""
triage.py — Combined category + urgency classification of one message.

    message ──► normalize (once) ──┬─► UrgencyClassifier  ──┐
                                   └─► CategoryClassifier ──┴─► TriageResult

Both classifiers run as concurrent tasks over the same token sequence.
A failure on either axis is contained: that axis reports the fallback label
("Unknown") with no confidence and the other axis is unaffected. ``triage``
never raises, so it can never block an alert submission.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from lifeline.core.config import Settings
from lifeline.ml.category import (
    CATEGORY_ARTIFACT,
    CategoryClassifier,
    load_category_artifacts,
)
from lifeline.ml.registry import ModelRegistry
from lifeline.ml.scoring import ClassScore
from lifeline.ml.text import normalize
from lifeline.ml.urgency import (
    URGENCY_ARTIFACT,
    UrgencyClassifier,
    load_urgency_artifacts,
)

logger = logging.getLogger(__name__)

DEFAULT_MESSAGE = "HELP"
FALLBACK_LABEL = "Unknown"


@dataclass(frozen=True)
class TriageResult:
    """Outcome of triaging one message. Built fresh per call."""

    category: str
    urgency: str
    category_confidence: Optional[float] = None
    urgency_confidence: Optional[float] = None

    @property
    def is_degraded(self) -> bool:
        """True when at least one axis fell back."""
        return self.category_confidence is None or self.urgency_confidence is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "category": self.category,
            "category_confidence": (
                round(self.category_confidence, 4)
                if self.category_confidence is not None else None
            ),
            "urgency": self.urgency,
            "urgency_confidence": (
                round(self.urgency_confidence, 4)
                if self.urgency_confidence is not None else None
            ),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TriageResult":
        return cls(
            category=data.get("category", FALLBACK_LABEL),
            urgency=data.get("urgency", FALLBACK_LABEL),
            category_confidence=data.get("category_confidence"),
            urgency_confidence=data.get("urgency_confidence"),
        )

    @classmethod
    def fallback(cls, label: str = FALLBACK_LABEL) -> "TriageResult":
        return cls(category=label, urgency=label)


class TriageService:
    """
    Runs both classifiers concurrently and merges their output.

    Usage:
        registry = build_default_registry(settings)
        service = TriageService(
            UrgencyClassifier(registry), CategoryClassifier(registry),
        )
        result = await service.triage("fire downtown need help")
    """

    def __init__(
        self,
        urgency: UrgencyClassifier,
        category: CategoryClassifier,
        *,
        default_message: str = DEFAULT_MESSAGE,
        fallback_label: str = FALLBACK_LABEL,
    ):
        self.urgency = urgency
        self.category = category
        self.default_message = default_message
        self.fallback_label = fallback_label

    def _resolve(self, axis: str, outcome: Any) -> ClassScore:
        if isinstance(outcome, BaseException):
            logger.warning(
                "%s classifier failed (%s: %s), using '%s'",
                axis, type(outcome).__name__, outcome, self.fallback_label,
            )
            return ClassScore(label=self.fallback_label)
        return outcome

    async def triage(self, message: Optional[str]) -> TriageResult:
        """
        Classify a message on both axes.

        Blank input is triaged as the default message ("HELP").
        """
        text = (message or "").strip() or self.default_message
        tokens = normalize(text)

        urgency_outcome, category_outcome = await asyncio.gather(
            self.urgency.classify(tokens),
            self.category.classify(tokens),
            return_exceptions=True,
        )

        urgency = self._resolve("urgency", urgency_outcome)
        category = self._resolve("category", category_outcome)

        result = TriageResult(
            category=category.label,
            urgency=urgency.label,
            category_confidence=category.confidence,
            urgency_confidence=urgency.confidence,
        )
        logger.info(
            "Triage: category=%s urgency=%s", result.category, result.urgency,
            extra={"category": result.category, "urgency": result.urgency},
        )
        return result


# ---------------------------------------------------------------------------
# Wiring
# ---------------------------------------------------------------------------


def build_default_registry(config: Settings) -> ModelRegistry:
    """Registry with the urgency and category artifacts from settings."""
    registry = ModelRegistry()
    registry.register(
        URGENCY_ARTIFACT,
        lambda: load_urgency_artifacts(
            config.URGENCY_VOCAB_PATH,
            config.URGENCY_MODEL_PATH,
            config.URGENCY_LABELS_PATH,
        ),
    )
    registry.register(
        CATEGORY_ARTIFACT,
        lambda: load_category_artifacts(
            config.CATEGORY_VOCAB_PATH,
            config.CATEGORY_MODEL_PATH,
            config.CATEGORY_LABELS_PATH,
        ),
    )
    return registry


def build_triage_service(config: Settings, registry: ModelRegistry) -> TriageService:
    return TriageService(
        UrgencyClassifier(registry, use_bigrams=config.URGENCY_USE_BIGRAMS),
        CategoryClassifier(registry),
        default_message=config.DEFAULT_MESSAGE,
        fallback_label=config.FALLBACK_LABEL,
    )
