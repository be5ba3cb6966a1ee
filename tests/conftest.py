"""
Shared fixtures: a manual clock, in-memory device storage, and small but
real classifier artifacts written to a temporary model directory.

Artifact design (so expected labels can be worked out by hand):

    Urgency (labels High / Low / Medium, prior favours Low)
        "fire", "help", "need help", "smoke" → strongly High
        "flood", "water"                     → strongly Medium
        nothing matched                      → Low (prior only)

    Category (labels Fire / Flood / Other, single linear ONNX layer)
        "fire", "smoke"          → Fire
        "flood", "water", "rain" → Flood
        zero vector              → Other (bias)
"""

from __future__ import annotations

import json
import math
from datetime import datetime, timezone
from pathlib import Path
from types import SimpleNamespace

import numpy as np
import onnx
import pytest
from onnx import TensorProto, helper, numpy_helper

from lifeline.alerts.connectivity import ConnectivityMonitor
from lifeline.alerts.identity import StaticIdentityProvider
from lifeline.alerts.location import FixedGeolocationSource, LocationResolver
from lifeline.alerts.models import Identity
from lifeline.alerts.pending import PendingAlertQueue
from lifeline.alerts.rate_limiter import SendRateLimiter
from lifeline.alerts.stores import InMemoryAlertStore
from lifeline.alerts.submission import SubmissionPipeline
from lifeline.core.config import Settings
from lifeline.core.storage import MemoryStore
from lifeline.ml.triage import build_default_registry, build_triage_service

# Chennai central
DEVICE_LAT = 13.0827
DEVICE_LON = 80.2707

URGENCY_VOCAB = {
    "fire": 0, "help": 1, "need help": 2, "flood": 3,
    "please": 4, "water": 5, "smoke": 6, "downtown": 7,
}
URGENCY_LABELS = ["High", "Low", "Medium"]
URGENCY_PRIOR = [math.log(0.3), math.log(0.4), math.log(0.3)]
#                 fire help need-help flood please water smoke downtown
URGENCY_TABLE = [
    [-1.0, -1.0, -1.0, -2.0, -3.0, -2.0, -1.0, -3.0],   # High
    [-4.0, -4.0, -4.0, -4.0, -1.0, -4.0, -4.0, -2.0],   # Low
    [-3.0, -3.0, -3.0, -1.0, -3.0, -1.0, -3.0, -3.0],   # Medium
]

CATEGORY_VOCAB = {"fire": 0, "smoke": 1, "flood": 2, "water": 3, "help": 4, "rain": 5}
CATEGORY_LABELS = ["Fire", "Flood", "Other"]
#                        Fire Flood Other
CATEGORY_WEIGHTS = [
    [2.0, 0.0, 0.0],   # fire
    [2.0, 0.0, 0.0],   # smoke
    [0.0, 2.0, 0.0],   # flood
    [0.0, 2.0, 0.0],   # water
    [0.0, 0.0, 0.5],   # help
    [0.0, 1.0, 0.0],   # rain
]
CATEGORY_BIAS = [0.0, 0.0, 0.1]


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.t = start

    def time(self) -> float:
        return self.t

    def now(self) -> datetime:
        return datetime.fromtimestamp(self.t, tz=timezone.utc)

    def advance(self, seconds: float) -> None:
        self.t += seconds


def write_json(path: Path, data) -> Path:
    path.write_text(json.dumps(data), encoding="utf-8")
    return path


def write_category_onnx(
    path: Path,
    weights,
    biases,
    *,
    softmax: bool = False,
    labels=None,
    input_name: str = "features",
    dynamic_width: bool = False,
) -> Path:
    """
    Save a dense feed-forward ONNX graph: MatMul + Add per layer, Relu
    between layers, optional Softmax on the output.
    """
    Ws = [np.asarray(w, dtype=np.float32) for w in weights]
    bs = [np.asarray(b, dtype=np.float32) for b in biases]
    nodes, initializers = [], []
    current = input_name
    for i, (W, b) in enumerate(zip(Ws, bs)):
        initializers += [numpy_helper.from_array(W, f"W{i}"), numpy_helper.from_array(b, f"b{i}")]
        nodes.append(helper.make_node("MatMul", [current, f"W{i}"], [f"mm{i}"]))
        nodes.append(helper.make_node("Add", [f"mm{i}", f"b{i}"], [f"z{i}"]))
        current = f"z{i}"
        if i < len(Ws) - 1:
            nodes.append(helper.make_node("Relu", [current], [f"h{i}"]))
            current = f"h{i}"
    if softmax:
        nodes.append(helper.make_node("Softmax", [current], ["probs"], axis=1))
        current = "probs"

    width = "n_features" if dynamic_width else int(Ws[0].shape[0])
    graph = helper.make_graph(
        nodes,
        "category",
        [helper.make_tensor_value_info(input_name, TensorProto.FLOAT, ["batch", width])],
        [helper.make_tensor_value_info(current, TensorProto.FLOAT, ["batch", int(Ws[-1].shape[1])])],
        initializer=initializers,
    )
    model = helper.make_model(graph, opset_imports=[helper.make_opsetid("", 13)])
    model.ir_version = 8
    if labels is not None:
        helper.set_model_props(model, {"labels": json.dumps(labels)})
    onnx.save(model, str(path))
    return path


def write_artifacts(model_dir: Path) -> SimpleNamespace:
    """Write all six classifier artifacts into ``model_dir``."""
    model_dir.mkdir(parents=True, exist_ok=True)
    paths = SimpleNamespace(
        urgency_vocab=write_json(model_dir / "urgency_vocabulary.json", URGENCY_VOCAB),
        urgency_model=write_json(model_dir / "urgency_nb.json", {
            "class_log_prior_": URGENCY_PRIOR,
            "feature_log_prob_": URGENCY_TABLE,
        }),
        urgency_labels=write_json(model_dir / "urgency_labels.json", URGENCY_LABELS),
        category_vocab=write_json(model_dir / "vectorizer.json", CATEGORY_VOCAB),
        category_model=write_category_onnx(
            model_dir / "category_model.onnx", [CATEGORY_WEIGHTS], [CATEGORY_BIAS],
        ),
        category_labels=write_json(model_dir / "category_labels.json", CATEGORY_LABELS),
    )
    return paths


# ═══════════════════════════════════════════════════════════════════════════
# Fixtures
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def artifacts(tmp_path) -> SimpleNamespace:
    return write_artifacts(tmp_path / "models")


@pytest.fixture
def test_settings(artifacts, tmp_path) -> Settings:
    return Settings(
        ENVIRONMENT="testing",
        MODEL_DIR=str(tmp_path / "models"),
        URGENCY_VOCAB_PATH=str(artifacts.urgency_vocab),
        URGENCY_MODEL_PATH=str(artifacts.urgency_model),
        URGENCY_LABELS_PATH=str(artifacts.urgency_labels),
        CATEGORY_VOCAB_PATH=str(artifacts.category_vocab),
        CATEGORY_MODEL_PATH=str(artifacts.category_model),
        CATEGORY_LABELS_PATH=str(artifacts.category_labels),
        LOCAL_STORE_BACKEND="memory",
        LOCAL_STORE_PATH=str(tmp_path / "device_state.json"),
        DEVICE_LATITUDE=DEVICE_LAT,
        DEVICE_LONGITUDE=DEVICE_LON,
        DEVICE_USER_ID="u-123",
        DEVICE_USER_TEMPORARY=True,
    )


@pytest.fixture
def registry(test_settings):
    return build_default_registry(test_settings)


@pytest.fixture
def triage_service(test_settings, registry):
    return build_triage_service(test_settings, registry)


@pytest.fixture
def alert_store() -> InMemoryAlertStore:
    return InMemoryAlertStore()


@pytest.fixture
def connectivity() -> ConnectivityMonitor:
    return ConnectivityMonitor(online=True)


def make_pipeline(
    *,
    triage,
    store,
    local_store,
    connectivity,
    clock,
    source=None,
    identity=Identity("u-123", is_temporary=True),
    capacity: int = 1,
) -> SubmissionPipeline:
    return SubmissionPipeline(
        triage=triage,
        store=store,
        local_store=local_store,
        connectivity=connectivity,
        location=LocationResolver(
            source or FixedGeolocationSource(DEVICE_LAT, DEVICE_LON),
            local_store,
            clock,
            timeout_seconds=0.5,
        ),
        identity=StaticIdentityProvider(identity),
        clock=clock,
        rate_limiter=SendRateLimiter(local_store, clock),
        pending=PendingAlertQueue(local_store, capacity=capacity),
    )


@pytest.fixture
def pipeline(triage_service, alert_store, memory_store, connectivity, clock):
    return make_pipeline(
        triage=triage_service,
        store=alert_store,
        local_store=memory_store,
        connectivity=connectivity,
        clock=clock,
    )
