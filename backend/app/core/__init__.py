"""
Core package — cross-cutting concerns.

Modules:
    config          — environment variables & settings
    logging_config  — structured JSON / pretty logging, phone masking
    errors          — exception hierarchy & handlers
    middleware      — request logging and correlation IDs
    health          — health check aggregation
    database        — async PostgreSQL connection
"""
