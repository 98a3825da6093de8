"""
Core package — cross-cutting concerns.

Modules:
    config          — environment variables & settings
    logging_config  — structured JSON / pretty logging
    errors          — exception hierarchy & handlers
    middleware      — request id, timing, access log
    database        — async SQLAlchemy engine & sessions
    cache           — Redis cache layer
    security        — bearer token verification
    health          — health check aggregation
    container       — process-wide service wiring
"""
