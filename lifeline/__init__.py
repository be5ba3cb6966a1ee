"""
Lifeline — offline-resilient emergency alert submission with on-device triage.

Sub-packages:
    core    — configuration, logging, errors, clock, local storage
    ml      — text features, urgency / category classifiers, triage combiner
    alerts  — submission pipeline, rate limiting, pending queue, collaborators
    api     — local HTTP surface consumed by the UI layer
"""

__version__ = "1.0.0"
