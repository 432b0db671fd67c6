"""
Custom exceptions for the ETL batch pipeline with structured error context.

Exception Hierarchy:
    ETLException (base)
    ├── ExtractionError
    │   ├── APIExtractionError
    │   └── DatabaseExtractionError
    ├── ConfigurationError
    │   ├── UnknownLoadTypeError
    │   └── PlaceholderError
    ├── TransformationError
    ├── RecordValidationError
    ├── LoadError
    │   └── DatabaseError
    ├── BatchError
    │   ├── BatchNotFoundError
    │   └── InvalidStatusTransitionError
    ├── PipelineTimeoutError
    └── RetryableError / NonRetryableError (mixins)

Fatal errors (extraction, configuration, batch bookkeeping, destination
failures) abort a run. TransformationError and RecordValidationError are
per-record and never leave the stage that raised them.
"""

from typing import Optional, Dict, Any
from datetime import datetime


class ETLException(Exception):
    """
    Base exception for all ETL-related errors.
    
    Attributes:
        message: Human-readable error message
        context: Additional context information (batch id, source, etc.)
        original_exception: The original exception that was caught (if any)
    """
    
    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.message = message
        self.context = context or {}
        self.original_exception = original_exception
        self.timestamp = datetime.utcnow()
        
        self.context["error_timestamp"] = self.timestamp.isoformat()
        
        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception
    
    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"
        
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg += f" | Context: {context_str}"
        
        if self.original_exception:
            base_msg += f" | Caused by: {type(self.original_exception).__name__}: {str(self.original_exception)}"
        
        return base_msg
    
    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/storage."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


# ============================================================================
# Extraction Errors
# ============================================================================

class ExtractionError(ETLException):
    """Base exception for data extraction failures. Always fatal to the run."""
    pass


class APIExtractionError(ExtractionError):
    """
    Exception raised when API data extraction fails.
    
    Context should include:
        - api_url: The API endpoint that failed
        - status_code: HTTP status code (if applicable)
        - response_body: Response body (truncated if large)
        - retry_count: Number of retries attempted
    """
    pass


class DatabaseExtractionError(ExtractionError):
    """
    Exception raised when a database or fact-table source cannot be read.
    
    Context should include:
        - source_name: Name of the configured source
        - connection: Named connection used
        - table_name / query: What was being read
    """
    pass


# ============================================================================
# Configuration Errors
# ============================================================================

class ConfigurationError(ETLException):
    """Pipeline configuration is unusable (missing merge key, bad descriptor)."""
    pass


class UnknownLoadTypeError(ConfigurationError):
    """Destination declares a load type with no registered writer."""
    pass


class PlaceholderError(ConfigurationError):
    """Fact-table query has more positional placeholders than can be bound."""
    pass


# ============================================================================
# Per-record Errors
# ============================================================================

class TransformationError(ETLException):
    """
    A staged record could not be mapped into the canonical schema.
    
    Context should include:
        - stg_id: Staging id of the record
        - batch_id: Batch the record belongs to
    """
    pass


class RecordValidationError(ETLException):
    """
    A transformed record failed its rule set.
    
    Context should include:
        - stg_id: Staging id of the record
        - errors: Serialized rule violations
    """
    pass


# ============================================================================
# Load Errors
# ============================================================================

class LoadError(ETLException):
    """Base exception for destination-level load failures."""
    pass


class DatabaseError(LoadError):
    """
    Exception raised when database operations fail.
    
    Context should include:
        - operation: Type of database operation (INSERT, DELETE, UPDATE)
        - table_name: Name of the table
    """
    pass


# ============================================================================
# Batch Ledger Errors
# ============================================================================

class BatchError(ETLException):
    """Base exception for batch ledger bookkeeping failures."""
    pass


class BatchNotFoundError(BatchError):
    """No ledger row exists for the batch id."""
    pass


class InvalidStatusTransitionError(BatchError):
    """
    Requested status change is not allowed.
    
    Context should include:
        - batch_id: Batch being updated
        - current_status / requested_status
    """
    pass


# ============================================================================
# Retry Strategy Mixins
# ============================================================================

class RetryableError(ETLException):
    """
    Mixin for errors that should trigger request-level retry logic.
    
    Use this for transient errors like:
    - Network timeouts
    - Rate limiting (HTTP 429)
    - Service unavailable (HTTP 5xx)
    """
    
    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        max_retries: int = 3,
        retry_delay: float = 1.0
    ):
        super().__init__(message, context, original_exception)
        self.max_retries = max_retries
        self.retry_delay = retry_delay


class NonRetryableError(ETLException):
    """
    Mixin for errors that should NOT trigger request-level retry logic.
    
    Use this for permanent errors like:
    - Authentication failures (HTTP 401, 403)
    - Resource not found (HTTP 404)
    """
    pass


class PipelineTimeoutError(ETLException):
    """A pipeline attempt ran past the hard wall-clock limit."""
    pass


# ============================================================================
# Specific Retryable Errors
# ============================================================================

class NetworkError(RetryableError, APIExtractionError):
    """Network-related errors that should be retried."""
    pass


class RateLimitError(RetryableError, APIExtractionError):
    """Rate limiting errors (HTTP 429) that should be retried with backoff."""
    
    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        retry_after: Optional[int] = None
    ):
        super().__init__(message, context, original_exception)
        self.retry_after = retry_after
        if retry_after:
            self.context["retry_after"] = retry_after


# ============================================================================
# Specific Non-Retryable Errors
# ============================================================================

class AuthenticationError(NonRetryableError, APIExtractionError):
    """Authentication failures (HTTP 401, 403) that should not be retried."""
    pass


class ResourceNotFoundError(NonRetryableError, APIExtractionError):
    """Resource not found errors (HTTP 404) that should not be retried."""
    pass
