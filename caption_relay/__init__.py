"""Caption relay application package.

Relays a Fireflies.ai realtime transcript into a Supabase record and
exposes start/status/stop over HTTP. Subpackages include:
- api: FastAPI route definitions
- core: configuration, logging and exceptions
- services: Fireflies connection, fragment buffer, session lifecycle, record store
- schemas: Pydantic models
- workers: flush timer and inactivity watchdog
"""

__all__ = [
    "api",
    "core",
    "services",
    "schemas",
    "workers",
]

__version__ = "1.0.0"
