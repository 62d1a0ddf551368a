"""
Audit trail for AI training and scoring events.
"""

from fitscore.infrastructure.audit.ai_event_logger import AIEventLogger, ai_event_logger

__all__ = ["AIEventLogger", "ai_event_logger"]
