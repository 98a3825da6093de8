"""
emergency — Panic alert lifecycle and trusted-contact notification fan-out.

Sub-modules:
    channels/       — Per-channel delivery gateways (SMS, email, push)
    models          — Enums and plain data structures shared across the system
    tables          — ORM rows (users, contacts, alerts, notification outcomes)
    contact_store   — Contact CRUD, duplicate-phone and single-primary rules
    alert_store     — Alert records and state transitions
    user_store      — User lookup and last-known-location refresh
    dispatcher      — Concurrent per-contact delivery, failures captured
    events          — In-process live event bus
    rate_limit      — Per-user activation throttle
    orchestrator    — Activation and resolution workflows
"""
