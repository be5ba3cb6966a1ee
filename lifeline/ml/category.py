"""
category.py — Neural disaster-category classifier.

The network ships as an ONNX graph and is evaluated with onnxruntime:

    Input  → float32 tensor [1, input_size], dense TF-IDF vector
    Output → first graph output, one score per label
    Label  → argmax(output)

Only the graph's first input and first output are used; the input name is
read from the session, not assumed. Labels come from a JSON list next to
the model, or from a ``labels`` metadata property embedded in the graph.

When the input width is symbolic (dynamic axis) it is taken from the
vocabulary at load time.
"""

from __future__ import annotations

import dataclasses
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Optional, Sequence

import numpy as np
import onnxruntime as ort

from lifeline.core.errors import ArtifactLoadError
from lifeline.ml.registry import ModelRegistry
from lifeline.ml.scoring import ClassScore, argmax_label
from lifeline.ml.vectorizer import conform_length, vectorize
from lifeline.ml.vocabulary import Vocabulary, load_vocabulary

logger = logging.getLogger(__name__)

CATEGORY_ARTIFACT = "category"
LABELS_METADATA_KEY = "labels"


# ---------------------------------------------------------------------------
# Model
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CategoryModel:
    """An inference session plus its ordered output labels."""

    session: Any
    input_name: str
    input_size: Optional[int]
    labels: List[str]

    @property
    def output_size(self) -> int:
        return len(self.labels)

    def predict(self, x: np.ndarray) -> np.ndarray:
        """Run one input vector through the network; returns the score row."""
        batch = np.asarray(x, dtype=np.float32).reshape(1, -1)
        outputs = self.session.run(None, {self.input_name: batch})
        return np.asarray(outputs[0], dtype=np.float64).ravel()


@dataclass(frozen=True)
class CategoryArtifacts:
    vocabulary: Vocabulary
    model: CategoryModel


def _static_dim(shape: Sequence[Any]) -> Optional[int]:
    """Last dimension of a tensor shape, or None when it is symbolic."""
    if not shape:
        return None
    last = shape[-1]
    return int(last) if isinstance(last, int) and last > 0 else None


def open_session(model_path: Path) -> ort.InferenceSession:
    options = ort.SessionOptions()
    options.graph_optimization_level = ort.GraphOptimizationLevel.ORT_ENABLE_ALL
    return ort.InferenceSession(
        str(model_path), sess_options=options, providers=["CPUExecutionProvider"],
    )


def _embedded_labels(session: ort.InferenceSession) -> Optional[List[str]]:
    raw = session.get_modelmeta().custom_metadata_map.get(LABELS_METADATA_KEY)
    if not raw:
        return None
    try:
        labels = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Ignoring malformed '%s' metadata on category model", LABELS_METADATA_KEY)
        return None
    return labels if isinstance(labels, list) else None


def load_category_model(
    model_path: str | Path,
    labels_path: Optional[str | Path] = None,
) -> CategoryModel:
    """
    Open the category ONNX graph and resolve its labels.

    Raises
    ------
    ArtifactLoadError
        Missing or unreadable graph, no labels, or an output width that
        disagrees with the label count.
    """
    model_path = Path(model_path)
    if not model_path.exists():
        raise ArtifactLoadError("category_model", "file not found", path=str(model_path))

    try:
        session = open_session(model_path)
    except Exception as e:
        raise ArtifactLoadError("category_model", str(e), path=str(model_path)) from e

    labels = None
    if labels_path is not None and Path(labels_path).exists():
        try:
            with open(labels_path, encoding="utf-8") as f:
                labels = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise ArtifactLoadError("category_labels", str(e), path=str(labels_path)) from e
    if labels is None:
        labels = _embedded_labels(session)
    if not isinstance(labels, list) or not labels:
        raise ArtifactLoadError("category_model", "no class labels", path=str(model_path))
    labels = [str(label) for label in labels]

    graph_input = session.get_inputs()[0]
    output_width = _static_dim(session.get_outputs()[0].shape)
    if output_width is not None and output_width != len(labels):
        raise ArtifactLoadError(
            "category_model",
            f"output width {output_width} != {len(labels)} labels",
            path=str(model_path),
        )

    model = CategoryModel(
        session=session,
        input_name=graph_input.name,
        input_size=_static_dim(graph_input.shape),
        labels=labels,
    )
    logger.info(
        "Category model loaded from %s (input '%s', %s → %d)",
        model_path, model.input_name, model.input_size or "dynamic", model.output_size,
    )
    return model


def load_category_artifacts(
    vocab_path: str | Path,
    model_path: str | Path,
    labels_path: Optional[str | Path] = None,
) -> CategoryArtifacts:
    """Load vocabulary + network together (registry loader)."""
    vocab = load_vocabulary(vocab_path)
    model = load_category_model(model_path, labels_path)
    if model.input_size is None:
        model = dataclasses.replace(model, input_size=vocab.size)
    elif model.input_size != vocab.size:
        logger.warning(
            "Category model input width %d != vocabulary size %d; "
            "vectors will be padded/truncated",
            model.input_size, vocab.size,
        )
    return CategoryArtifacts(vocabulary=vocab, model=model)


# ---------------------------------------------------------------------------
# Inference
# ---------------------------------------------------------------------------


def _is_distribution(scores: np.ndarray) -> bool:
    return bool(np.all(scores >= 0.0) and abs(float(scores.sum()) - 1.0) < 1e-4)


def score_category(vector: np.ndarray, model: CategoryModel) -> ClassScore:
    """
    Classify a dense feature vector.

    The vector is conformed to the network input width and any non-finite
    entry is zeroed before inference. Graphs that end in a softmax report
    their own probability as the confidence.
    """
    x = conform_length(vector, model.input_size or len(vector))
    x = np.nan_to_num(x, nan=0.0, posinf=0.0, neginf=0.0)

    out = model.predict(x)
    if out.shape[0] != len(model.labels):
        raise ValueError(f"model produced {out.shape[0]} scores for {len(model.labels)} labels")

    result = argmax_label(out, model.labels)
    if _is_distribution(out):
        best = int(np.argmax(out))
        result = ClassScore(label=result.label, scores=result.scores, confidence=float(out[best]))
    return result


class CategoryClassifier:
    """Category axis of triage; artifacts come from the injected registry."""

    def __init__(self, registry: ModelRegistry, artifact: str = CATEGORY_ARTIFACT):
        self.registry = registry
        self.artifact = artifact

    async def classify(self, tokens: Sequence[str]) -> ClassScore:
        async with self.registry.lease(self.artifact) as artifacts:
            vector = vectorize(tokens, artifacts.vocabulary)
            result = score_category(vector, artifacts.model)
        logger.debug("Category %s", result.label, extra={"category": result.label})
        return result
