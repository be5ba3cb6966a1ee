"""
alerts — Offline-resilient emergency alert submission.

Sub-modules:
    models        — data structures shared across the pipeline
    submission    — state machine: rate check → triage → send / queue
    rate_limiter  — hourly cap + cooldown over local send history
    pending       — bounded on-device queue of undelivered alerts
    location      — bounded-time fix with last-known fallback
    connectivity  — online/offline signal with transition listeners
    identity      — who is sending
    stores        — remote append-only alert stores
"""
