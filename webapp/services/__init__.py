"""
Webapp services package.

- logging_config: application logging configuration
- sessions: in-memory store of open viewer sessions
- serialization_utils: JSON encoding of render frames and legends
"""

from webapp.services.logging_config import configure_logging
from webapp.services.sessions import SessionStore
from webapp.services.serialization_utils import FrameEncoder, to_json

__all__ = [
    "configure_logging",
    "SessionStore",
    "FrameEncoder",
    "to_json",
]
