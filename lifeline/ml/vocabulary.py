"""
vocabulary.py — Fixed token → index mapping loaded from a JSON artifact.

Accepted artifact shapes:

    {"fire": 0, "flood": 1, ...}                            # bare mapping
    {"vocabulary_": {"fire": 0, ...}, "idf_": [1.2, ...]}   # sklearn export

The declared size is ``max(max_index + 1, len(mapping))`` so a sparse index
space still produces vectors wide enough for every entry.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

import numpy as np

from lifeline.core.errors import ArtifactLoadError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Vocabulary:
    """Immutable vocabulary with optional parallel IDF weights."""

    index: Mapping[str, int]
    size: int
    idf: Optional[np.ndarray] = None

    def __contains__(self, token: str) -> bool:
        return token in self.index

    def get(self, token: str) -> Optional[int]:
        return self.index.get(token)

    @property
    def has_idf(self) -> bool:
        return self.idf is not None


def build_vocabulary(
    mapping: Mapping[str, Any],
    idf: Optional[Any] = None,
) -> Vocabulary:
    """
    Validate a raw mapping and wrap it as a Vocabulary.

    Raises
    ------
    ValueError
        If an index is negative or not an integer.
    """
    clean: Dict[str, int] = {}
    for token, idx in mapping.items():
        if isinstance(idx, bool) or not isinstance(idx, (int, float)) or int(idx) != idx:
            raise ValueError(f"index for {token!r} is not an integer: {idx!r}")
        if idx < 0:
            raise ValueError(f"index for {token!r} is negative: {idx}")
        clean[str(token)] = int(idx)

    max_index = max(clean.values()) if clean else -1
    size = max(max_index + 1, len(clean))

    weights: Optional[np.ndarray] = None
    if idf is not None:
        weights = np.asarray(idf, dtype=np.float32)
        if weights.ndim != 1 or len(weights) != size:
            logger.warning(
                "IDF length %s does not match vocabulary size %d, using TF weighting",
                weights.shape, size,
            )
            weights = None

    return Vocabulary(index=MappingProxyType(clean), size=size, idf=weights)


def load_vocabulary(path: str | Path) -> Vocabulary:
    """
    Load a vocabulary artifact from disk.

    Raises
    ------
    ArtifactLoadError
        If the file is missing, not JSON, or not a token → index mapping.
    """
    path = Path(path)
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ArtifactLoadError("vocabulary", str(e), path=str(path)) from e

    if not isinstance(data, dict):
        raise ArtifactLoadError("vocabulary", "expected a JSON object", path=str(path))

    mapping = data.get("vocabulary_", data)
    idf = data.get("idf_", data.get("idf")) if "vocabulary_" in data else None
    if not isinstance(mapping, dict):
        raise ArtifactLoadError("vocabulary", "vocabulary_ is not an object", path=str(path))

    try:
        vocab = build_vocabulary(mapping, idf)
    except (TypeError, ValueError) as e:
        raise ArtifactLoadError("vocabulary", str(e), path=str(path)) from e

    logger.info(
        "Vocabulary loaded from %s (size=%d, idf=%s)",
        path, vocab.size, vocab.has_idf,
    )
    return vocab
