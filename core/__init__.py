"""
Core utilities and configuration for the trail import service.

This package provides foundational components used throughout the pipeline:

Modules:
    config: Application configuration and environment variable management
    database: Async engine, session and session-factory management
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration and utilities

Usage:
    from core.config import settings
    from core.database import engine, async_session_maker
    from core.exceptions import ProviderError, NormalizationError
    from core.logging import setup_logging

Example:
    # Initialize logging
    setup_logging()

    # Open a database session
    async with async_session_maker() as session:
        # Perform database operations
        pass
"""

__all__ = [
    "settings",
    "engine",
    "async_session_maker",
    "build_engine",
    "build_session_factory",
    "setup_logging",
    # Exceptions
    "ImportPipelineError",
    "RetryableError",
    "NonRetryableError",
    "ProviderError",
    "ProviderRequestError",
    "NetworkError",
    "RateLimitError",
    "AuthenticationError",
    "ResourceNotFoundError",
    "CircuitOpenError",
    "NormalizationError",
    "InvalidCoordinatesError",
    "UnknownSourceError",
    "BatchWriteError",
    "JobError",
    "JobNotFoundError",
    "JobCreationError",
    "InvalidJobTransitionError",
]
