"""Google Fit sync for Steptrack.

Modules:
    orchestrator — Fetch with one refresh-and-retry on an expired token
    scheduler    — Nightly batch over all connected users, plus manual triggers
"""
