"""
urgency.py — Naive-Bayes style log-linear urgency scorer.

Scoring (event model: a feature counts once however often it appears):

    score[c] = log P(c) + Σ_{f ∈ matched} log P(f | c)
    label    = argmax_c score[c]      (first class wins ties)

Artifact format (scikit-learn ``MultinomialNB`` export):

    {
        "class_log_prior_":  [lp_0, lp_1, ...],          # n_classes
        "feature_log_prob_": [[...], [...], ...],        # n_classes × n_features
        "classes_":          ["High", "Low", "Medium"]   # optional
    }

Labels may come from a separate JSON list instead of ``classes_``. A
``.joblib`` dump of the same dict, or of the fitted estimator itself, is
read as well.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import AbstractSet, List, Optional, Sequence

import numpy as np

from lifeline.core.errors import ArtifactLoadError
from lifeline.ml.registry import ModelRegistry
from lifeline.ml.scoring import ClassScore, argmax_label
from lifeline.ml.vectorizer import matched_indices
from lifeline.ml.vocabulary import Vocabulary, load_vocabulary

logger = logging.getLogger(__name__)

URGENCY_ARTIFACT = "urgency"


# ---------------------------------------------------------------------------
# Model
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class UrgencyModel:
    """
    Class priors and per-feature log-likelihoods.

    Attributes
    ----------
    labels : list of str
        Ordered class labels.
    log_prior : np.ndarray, shape (n_classes,)
    log_likelihood : np.ndarray, shape (n_features, n_classes)
        Row ``f`` holds log P(f | c) for every class.
    """

    labels: List[str]
    log_prior: np.ndarray
    log_likelihood: np.ndarray

    @property
    def n_features(self) -> int:
        return int(self.log_likelihood.shape[0])


@dataclass(frozen=True)
class UrgencyArtifacts:
    vocabulary: Vocabulary
    model: UrgencyModel


def _read_json(path: Path, artifact: str):
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ArtifactLoadError(artifact, str(e), path=str(path)) from e


def _read_parameters(path: Path):
    """JSON export, or a joblib dump of a dict or a fitted MultinomialNB."""
    if path.suffix != ".joblib":
        return _read_json(path, "urgency_model")
    import joblib
    try:
        raw = joblib.load(str(path))
    except Exception as e:
        raise ArtifactLoadError("urgency_model", str(e), path=str(path)) from e
    if isinstance(raw, dict):
        return raw
    fields = ("class_log_prior_", "feature_log_prob_", "classes_")
    return {name: getattr(raw, name) for name in fields if hasattr(raw, name)}


def load_urgency_model(
    model_path: str | Path,
    vocabulary: Vocabulary,
    labels_path: Optional[str | Path] = None,
) -> UrgencyModel:
    """
    Load and validate the urgency parameter artifact.

    Raises
    ------
    ArtifactLoadError
        Missing file, malformed JSON, or a table whose shape disagrees with
        the vocabulary size / number of labels.
    """
    model_path = Path(model_path)
    data = _read_parameters(model_path)
    if not isinstance(data, dict):
        raise ArtifactLoadError("urgency_model", "expected a parameter object", path=str(model_path))

    if labels_path is not None and Path(labels_path).exists():
        labels = _read_json(Path(labels_path), "urgency_labels")
    else:
        labels = data.get("classes_")
        if isinstance(labels, np.ndarray):
            labels = labels.tolist()
    if not isinstance(labels, list) or not labels:
        raise ArtifactLoadError("urgency_model", "no class labels", path=str(model_path))
    labels = [str(label) for label in labels]

    try:
        prior = np.asarray(data["class_log_prior_"], dtype=np.float64)
        table = np.asarray(data["feature_log_prob_"], dtype=np.float64)
    except (KeyError, TypeError, ValueError) as e:
        raise ArtifactLoadError("urgency_model", f"bad parameters: {e}", path=str(model_path)) from e

    n_classes = len(labels)
    if prior.shape != (n_classes,):
        raise ArtifactLoadError(
            "urgency_model",
            f"prior has shape {prior.shape}, expected ({n_classes},)",
        )
    if table.ndim != 2 or table.shape[0] != n_classes:
        raise ArtifactLoadError(
            "urgency_model",
            f"feature_log_prob_ has shape {table.shape}, expected ({n_classes}, n_features)",
        )

    likelihood = table.T.copy()  # → (n_features, n_classes)
    if likelihood.shape[0] != vocabulary.size:
        raise ArtifactLoadError(
            "urgency_model",
            f"{likelihood.shape[0]} feature rows for a vocabulary of {vocabulary.size}",
        )
    if not (np.all(np.isfinite(prior)) and np.all(np.isfinite(likelihood))):
        raise ArtifactLoadError("urgency_model", "non-finite parameters")

    logger.info(
        "Urgency model loaded from %s (%d features × %d classes)",
        model_path, likelihood.shape[0], n_classes,
    )
    return UrgencyModel(labels=labels, log_prior=prior, log_likelihood=likelihood)


def load_urgency_artifacts(
    vocab_path: str | Path,
    model_path: str | Path,
    labels_path: Optional[str | Path] = None,
) -> UrgencyArtifacts:
    """Load vocabulary + model together (registry loader)."""
    vocab = load_vocabulary(vocab_path)
    return UrgencyArtifacts(
        vocabulary=vocab,
        model=load_urgency_model(model_path, vocab, labels_path),
    )


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------


def score_urgency(indices: AbstractSet[int], model: UrgencyModel) -> ClassScore:
    """
    Score a set of matched feature indices.

    Parameters
    ----------
    indices : set of int
        Deduplicated vocabulary indices from ``matched_indices``.
    model : UrgencyModel

    Returns
    -------
    ClassScore
        Prior-only decision when ``indices`` is empty.
    """
    scores = model.log_prior.copy()
    for idx in indices:
        if 0 <= idx < model.n_features:
            scores += model.log_likelihood[idx]
    return argmax_label(scores, model.labels)


class UrgencyClassifier:
    """Urgency axis of triage; artifacts come from the injected registry."""

    def __init__(
        self,
        registry: ModelRegistry,
        artifact: str = URGENCY_ARTIFACT,
        use_bigrams: bool = True,
    ):
        self.registry = registry
        self.artifact = artifact
        self.use_bigrams = use_bigrams

    async def classify(self, tokens: Sequence[str]) -> ClassScore:
        async with self.registry.lease(self.artifact) as artifacts:
            indices = matched_indices(tokens, artifacts.vocabulary, self.use_bigrams)
            result = score_urgency(indices, artifacts.model)
        logger.debug(
            "Urgency %s (%d features matched)", result.label, len(indices),
            extra={"urgency": result.label},
        )
        return result
