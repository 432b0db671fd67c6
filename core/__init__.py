"""
Core utilities and configuration for the shipment analytics ETL.

Modules:
    config: Application configuration and environment variable management
    database: Named database connections and session management
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration and utilities

Usage:
    from core.config import settings
    from core.database import registry
    from core.exceptions import ExtractionError, BatchNotFoundError
    from core.logging import setup_logging
"""

__all__ = [
    "settings",
    "registry",
    "setup_logging",
    # Exceptions
    "ETLException",
    "ExtractionError",
    "APIExtractionError",
    "DatabaseExtractionError",
    "ConfigurationError",
    "UnknownLoadTypeError",
    "PlaceholderError",
    "TransformationError",
    "RecordValidationError",
    "LoadError",
    "DatabaseError",
    "BatchError",
    "BatchNotFoundError",
    "InvalidStatusTransitionError",
    "PipelineTimeoutError",
    "RetryableError",
    "NonRetryableError",
    "NetworkError",
    "RateLimitError",
    "AuthenticationError",
    "ResourceNotFoundError",
]
