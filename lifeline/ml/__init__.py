"""
ml — On-device alert triage.

Modules:
    text        — message normalisation / tokenisation
    vocabulary  — token → index artifacts (+ optional IDF weights)
    vectorizer  — dense TF/TF-IDF vectors and sparse matched-index sets
    urgency     — Naive-Bayes style log-linear urgency scorer
    category    — feed-forward neural category classifier (numpy inference)
    registry    — lazily loaded, reference-counted model artifacts
    triage      — concurrent combiner producing a TriageResult
"""
