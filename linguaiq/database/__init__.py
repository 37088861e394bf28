"""
Database package: declarative base, async engine and ORM models.
"""

from linguaiq.database.base import Base, Database, ModelBase, metadata
from linguaiq.database.models import (
    AssessmentResponseModel,
    AssessmentResultModel,
    AssessmentSessionModel,
    UserModel,
)

__all__ = [
    'Base',
    'Database',
    'ModelBase',
    'metadata',
    'AssessmentResponseModel',
    'AssessmentResultModel',
    'AssessmentSessionModel',
    'UserModel',
]
