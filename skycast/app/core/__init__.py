"""
Core package — cross-cutting concerns.

Modules:
    config          — environment variables & settings
    logging_config  — structured logging (pretty / JSON)
    errors          — exception hierarchy & handlers
    middleware      — request logging, correlation IDs
    health          — health check aggregation
    database        — async SQLite engine & sessions
    cache           — in-process TTL cache (geocoding)
    budget          — daily metered-call budget
    jsonfile        — atomic JSON file helpers
"""
