"""
vectorizer.py — Feature extraction over a fixed Vocabulary.

Two projections of the same token sequence:

    Dense  (category path)  → float32 vector, length == vocabulary size
        counts → TF-IDF (if IDF present) or TF (÷ token count) → L2 norm

    Sparse (urgency path)   → frozenset of matched vocabulary indices
        unigrams (+ bigrams) looked up, duplicates collapse

Out-of-vocabulary tokens are dropped silently.
"""

from __future__ import annotations

import logging
from typing import FrozenSet, Sequence

import numpy as np

from lifeline.core.errors import VocabularyError
from lifeline.ml.text import bigrams
from lifeline.ml.vocabulary import Vocabulary

logger = logging.getLogger(__name__)


def vectorize(tokens: Sequence[str], vocab: Vocabulary) -> np.ndarray:
    """
    Build the dense TF / TF-IDF feature vector for a token sequence.

    Parameters
    ----------
    tokens : sequence of str
        Output of ``text.normalize``.
    vocab : Vocabulary

    Returns
    -------
    np.ndarray, shape (vocab.size,), dtype float32
        L2-normalised; the zero vector when no token is known.
    """
    if vocab.size <= 0:
        raise VocabularyError("cannot vectorize against an empty vocabulary")

    vec = np.zeros(vocab.size, dtype=np.float32)

    for tok in tokens:
        idx = vocab.get(tok)
        if idx is not None and idx < vocab.size:
            vec[idx] += 1.0

    if vocab.idf is not None:
        vec *= vocab.idf
    else:
        vec /= float(len(tokens) or 1)

    norm = float(np.linalg.norm(vec))
    if norm > 0.0 and np.isfinite(norm):
        vec /= norm

    return conform_length(vec, vocab.size)


def conform_length(vector: np.ndarray, size: int) -> np.ndarray:
    """
    Truncate or zero-pad a vector to exactly ``size`` entries.

    Guards against a stale vocabulary producing vectors of the wrong width.
    """
    vector = np.asarray(vector, dtype=np.float32).ravel()
    if len(vector) == size:
        return vector

    logger.warning("Vector size mismatch (%d != %d), padding/truncating", len(vector), size)
    fixed = np.zeros(size, dtype=np.float32)
    n = min(size, len(vector))
    fixed[:n] = vector[:n]
    return fixed


def matched_indices(
    tokens: Sequence[str],
    vocab: Vocabulary,
    use_bigrams: bool = True,
) -> FrozenSet[int]:
    """
    Set of vocabulary indices present in the message.

    Parameters
    ----------
    tokens : sequence of str
    vocab : Vocabulary
    use_bigrams : bool
        Also look up adjacent pairs ("need help").

    Returns
    -------
    frozenset of int
        Empty when no token (or bigram) is in the vocabulary.
    """
    if vocab.size <= 0:
        raise VocabularyError("cannot match against an empty vocabulary")

    features = list(tokens)
    if use_bigrams:
        features.extend(bigrams(tokens))

    found = set()
    for feat in features:
        idx = vocab.get(feat)
        if idx is not None:
            found.add(idx)
    return frozenset(found)
