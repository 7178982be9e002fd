"""Cross-cutting utilities for the processing pipeline.

Modules:
    logging: JSON structured logger used by workers, clients and the engine.
"""

from petpulse.utils.logging import StructuredLogger, get_logger

__all__ = [
    "StructuredLogger",
    "get_logger",
]
