"""
Core business logic - framework-agnostic.
Used by the web API; routes stay thin and call into here.
"""

# Database (SQLAlchemy)
from .database import get_connection, get_transaction, get_engine, close_engine, is_configured

# Enums
from .enums import DiagnosticLevel, LessonEngineState, LessonEvent, AssessmentType

# Lesson engine
from core import lessons

__all__ = [
    # Database (SQLAlchemy)
    'get_connection', 'get_transaction', 'get_engine', 'close_engine', 'is_configured',
    # Enums
    'DiagnosticLevel', 'LessonEngineState', 'LessonEvent', 'AssessmentType',
    # Lesson engine
    'lessons',
]
