"""
Error Handling System for LinguaIQ

This module provides the error framework of the assessment core:
1. Custom exception hierarchy for validation, lookup, state and storage failures
2. The provider error taxonomy shared by every transcription and rubric evaluation call
3. Structured error logging and reporting
"""

import json
import logging
import traceback
from enum import Enum
from typing import Any, Dict, List, Optional, Union
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field, field_validator

logger = logging.getLogger(__name__)


class ErrorSeverity(Enum):
    """Severity levels for errors"""
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorCode(Enum):
    """Standard error codes for LinguaIQ"""
    # General errors
    UNKNOWN_ERROR = "unknown_error"
    VALIDATION_ERROR = "validation_error"
    NOT_FOUND_ERROR = "not_found_error"

    # Assessment errors
    SESSION_NOT_FOUND = "session_not_found"
    BLUEPRINT_NOT_FOUND = "blueprint_not_found"
    QUESTION_NOT_FOUND = "question_not_found"
    CRITERION_NOT_FOUND = "criterion_not_found"
    USER_NOT_FOUND = "user_not_found"
    INVALID_SESSION_STATE = "invalid_session_state"
    DUPLICATE_RESPONSE = "duplicate_response"
    RESPONSE_TYPE_MISMATCH = "response_type_mismatch"

    # AI provider errors
    PROVIDER_ERROR = "provider_error"

    # Database errors
    DATABASE_ERROR = "database_error"


class ProviderErrorCode(Enum):
    """Normalized failure kinds of an external AI provider call"""
    TIMEOUT = "TIMEOUT"
    CANCELLED = "CANCELLED"
    BAD_REQUEST = "BAD_REQUEST"
    UNAUTHORIZED = "UNAUTHORIZED"
    FORBIDDEN = "FORBIDDEN"
    TOO_MANY_REQUESTS = "TOO_MANY_REQUESTS"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    INVALID_RESPONSE = "INVALID_RESPONSE"
    UNKNOWN = "UNKNOWN"


RETRYABLE_PROVIDER_CODES = frozenset({
    ProviderErrorCode.TIMEOUT,
    ProviderErrorCode.TOO_MANY_REQUESTS,
    ProviderErrorCode.SERVICE_UNAVAILABLE,
})


class ErrorInfo(BaseModel):
    """Structured information about an error"""
    model_config = ConfigDict(use_enum_values=True)

    code: ErrorCode
    message: str
    timestamp: datetime = Field(default_factory=datetime.now)
    severity: ErrorSeverity = ErrorSeverity.ERROR
    details: Optional[Dict[str, Any]] = None
    exception_type: Optional[str] = None
    exception_message: Optional[str] = None
    stack_trace: Optional[List[str]] = None
    context: Optional[Dict[str, Any]] = None

    @field_validator('stack_trace', mode='before')
    @classmethod
    def validate_stack_trace(cls, v):
        """Format stack trace if it's a string"""
        if isinstance(v, str):
            return v.splitlines()
        return v


class LinguaIQError(Exception):
    """Base exception class for all LinguaIQ errors"""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.UNKNOWN_ERROR,
        severity: ErrorSeverity = ErrorSeverity.ERROR,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.severity = severity
        self.details = details or {}
        self.cause = cause
        self.context = context or {}
        self.timestamp = datetime.now()

    def to_error_info(self, include_stack_trace: bool = False) -> ErrorInfo:
        """Convert the exception to an ErrorInfo object"""
        stack_trace = None
        if include_stack_trace:
            stack_trace = traceback.format_exception(type(self), self, self.__traceback__)

        details = dict(self.details)
        if self.cause is not None:
            details["cause"] = {
                "type": type(self.cause).__name__,
                "message": str(self.cause)
            }

        return ErrorInfo(
            code=self.code,
            message=self.message,
            timestamp=self.timestamp,
            severity=self.severity,
            details=details,
            exception_type=type(self).__name__,
            exception_message=str(self),
            stack_trace=stack_trace,
            context=self.context
        )

    def to_dict(self, include_stack_trace: bool = False) -> Dict[str, Any]:
        """Convert the exception to a dictionary"""
        return self.to_error_info(include_stack_trace).model_dump(mode="json")

    def to_json(self, include_stack_trace: bool = False) -> str:
        """Convert the exception to a JSON string"""
        return json.dumps(self.to_dict(include_stack_trace))

    def __str__(self) -> str:
        base_str = f"{self.code.value}: {self.message}"
        if self.details:
            base_str += f" (details: {self.details})"
        if self.cause:
            base_str += f" caused by {type(self.cause).__name__}: {str(self.cause)}"
        return base_str


class ValidationError(LinguaIQError):
    """Error raised when a value object rejects its input"""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        details = details or {}
        if field is not None:
            details["field"] = field
        self.field = field

        super().__init__(
            message=message,
            code=ErrorCode.VALIDATION_ERROR,
            severity=ErrorSeverity.WARNING,
            details=details,
            cause=cause,
            context=context
        )


class NotFoundError(LinguaIQError):
    """Error raised when a requested resource is not found"""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.NOT_FOUND_ERROR,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            code=code,
            severity=ErrorSeverity.WARNING,
            details=details,
            cause=cause,
            context=context
        )


class SessionNotFoundError(NotFoundError):
    """Error raised when an assessment session is not found"""

    def __init__(self, session_id: str, details: Optional[Dict[str, Any]] = None):
        details = details or {}
        details["session_id"] = session_id
        super().__init__(
            message=f"Assessment session {session_id} not found",
            code=ErrorCode.SESSION_NOT_FOUND,
            details=details
        )


class BlueprintNotFoundError(NotFoundError):
    """Error raised when an assessment blueprint is not found"""

    def __init__(self, blueprint_id: str, details: Optional[Dict[str, Any]] = None):
        details = details or {}
        details["blueprint_id"] = blueprint_id
        super().__init__(
            message=f"Assessment blueprint {blueprint_id} not found",
            code=ErrorCode.BLUEPRINT_NOT_FOUND,
            details=details
        )


class QuestionNotFoundError(NotFoundError):
    """Error raised when a question is not part of the session"""

    def __init__(self, question_id: str, details: Optional[Dict[str, Any]] = None):
        details = details or {}
        details["question_id"] = question_id
        super().__init__(
            message=f"Question {question_id} not found",
            code=ErrorCode.QUESTION_NOT_FOUND,
            details=details
        )


class CriterionNotFoundError(NotFoundError):
    """Error raised when a rubric criterion referenced by a question is unknown"""

    def __init__(self, criterion_id: str, details: Optional[Dict[str, Any]] = None):
        details = details or {}
        details["criterion_id"] = criterion_id
        super().__init__(
            message=f"Rubric criterion {criterion_id} not found",
            code=ErrorCode.CRITERION_NOT_FOUND,
            details=details
        )


class UserNotFoundError(NotFoundError):
    """Error raised when a learner record is not found"""

    def __init__(self, user_id: str, details: Optional[Dict[str, Any]] = None):
        details = details or {}
        details["user_id"] = user_id
        super().__init__(
            message=f"User {user_id} not found",
            code=ErrorCode.USER_NOT_FOUND,
            details=details
        )


class AssessmentError(LinguaIQError):
    """Base class for assessment-related errors"""
    pass


class InvalidSessionStateError(AssessmentError):
    """Error raised when an operation is not allowed in the session's status"""

    def __init__(
        self,
        message: str,
        session_id: Optional[str] = None,
        status: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        details = details or {}
        if session_id is not None:
            details["session_id"] = session_id
        if status is not None:
            details["status"] = status

        super().__init__(
            message=message,
            code=ErrorCode.INVALID_SESSION_STATE,
            severity=ErrorSeverity.WARNING,
            details=details
        )


class DuplicateResponseError(AssessmentError):
    """Error raised when a response is recorded twice for the same question"""

    def __init__(
        self,
        question_id: str,
        session_id: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None
    ):
        details = details or {}
        details["question_id"] = question_id
        details["session_id"] = session_id

        super().__init__(
            message=f"Response for question {question_id} in session {session_id} already recorded",
            code=ErrorCode.DUPLICATE_RESPONSE,
            severity=ErrorSeverity.WARNING,
            details=details,
            cause=cause
        )


class ResponseTypeMismatchError(AssessmentError):
    """Error raised when a response variant does not match its question's type"""

    def __init__(
        self,
        question_id: str,
        expected: str,
        received: str,
        details: Optional[Dict[str, Any]] = None
    ):
        details = details or {}
        details.update({"question_id": question_id, "expected": expected, "received": received})

        super().__init__(
            message=f"Response type {received} does not match question {question_id} of type {expected}",
            code=ErrorCode.RESPONSE_TYPE_MISMATCH,
            severity=ErrorSeverity.WARNING,
            details=details
        )


class DatabaseError(LinguaIQError):
    """Error raised when the SQL store fails"""

    def __init__(
        self,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[BaseException] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            code=ErrorCode.DATABASE_ERROR,
            severity=ErrorSeverity.ERROR,
            details=details,
            cause=cause,
            context=context
        )


class ProviderError(LinguaIQError):
    """
    Normalized failure of an external AI provider call.

    ``provider_code`` carries the taxonomy value; the original exception is kept
    in ``cause``. ``retryable`` is only a hint: the core never retries.
    """

    def __init__(
        self,
        message: str,
        provider_code: ProviderErrorCode = ProviderErrorCode.UNKNOWN,
        cause: Optional[BaseException] = None,
        details: Optional[Dict[str, Any]] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        self.provider_code = provider_code
        super().__init__(
            message=message,
            code=ErrorCode.PROVIDER_ERROR,
            severity=ErrorSeverity.ERROR,
            details=details,
            cause=cause,
            context=context
        )

    @property
    def retryable(self) -> bool:
        return self.provider_code in RETRYABLE_PROVIDER_CODES

    def to_error_info(self, include_stack_trace: bool = False) -> ErrorInfo:
        info = super().to_error_info(include_stack_trace)
        info.details = {**(info.details or {}), "provider_code": self.provider_code.value}
        return info

    def __str__(self) -> str:
        return f"{self.provider_code.value}: {self.message}"


class TranscriptionProviderError(ProviderError):
    """Failure of a speech-to-text call"""
    pass


class RubricEvaluationProviderError(ProviderError):
    """Failure of a rubric evaluation call"""
    pass


def log_error(
    error: BaseException,
    logger_instance: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None,
    context: Optional[Dict[str, Any]] = None,
    level: int = logging.ERROR
) -> None:
    """
    Write a structured record for an exception.

    Args:
        error: The exception to log
        logger_instance: Logger to use (module logger when None)
        context: Extra context merged into the record
        level: Log level of the record
    """
    log = logger_instance or logger
    data: Dict[str, Any] = dict(context or {})

    if isinstance(error, LinguaIQError):
        data.update(error.to_dict())
    else:
        data.update({
            "exception_type": type(error).__name__,
            "exception_message": str(error),
        })

    log.log(level, f"{type(error).__name__}: {error}", extra={"data": data})
