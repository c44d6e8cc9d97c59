"""
Error Handling - Centralized error policies and custom exceptions.

This module defines how different error types should be handled throughout
the indexing pipeline. Per-document errors degrade gracefully into a
``failed`` outcome; storage errors abort the run.
"""

import logging
from enum import Enum, auto
from dataclasses import dataclass
from typing import Optional


logger = logging.getLogger(__name__)


class ErrorAction(Enum):
    """What to do when an error occurs."""
    SKIP = auto()           # Fail this document, continue with the rest
    RETRY = auto()          # Retry the operation (with backoff)
    ABORT = auto()          # Stop the entire run


@dataclass
class ErrorPolicy:
    """Policy for handling a specific error type."""
    action: ErrorAction
    log_level: int
    message_template: str = "{file}: {error}"


class IndexingError(Exception):
    """Base exception for indexing errors."""
    pass


class ChunkingError(IndexingError):
    """Document could not be split into chunks within the token limit."""
    pass


class EmbeddingError(IndexingError):
    """Error during embedding generation."""
    pass


class StorageError(IndexingError):
    """
    Error in the persistence backend.

    When raised out of an indexing run, ``partial_result`` holds the
    IndexResult accumulated before the failure and ``file_path`` names
    the document being written, if any.
    """
    def __init__(self, message: str, partial_result=None, file_path: Optional[str] = None):
        super().__init__(message)
        self.partial_result = partial_result
        self.file_path = file_path


class IndexingInProgressError(IndexingError):
    """Another indexing run already holds the store's writer slot."""
    pass


class FrontmatterError(IndexingError):
    """Document frontmatter is malformed or has fields of the wrong type."""
    def __init__(self, problems: list[str]):
        self.problems = problems
        super().__init__("; ".join(problems))


# Error type to policy mapping (first match wins, so subclasses go first)
ERROR_POLICIES: dict[type, ErrorPolicy] = {
    ChunkingError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.WARNING,
        message_template="Cannot chunk {file}: {error}"
    ),
    EmbeddingError: ErrorPolicy(
        action=ErrorAction.RETRY,
        log_level=logging.WARNING,
        message_template="Embedding failed for {file}: {error}"
    ),
    StorageError: ErrorPolicy(
        action=ErrorAction.ABORT,
        log_level=logging.ERROR,
        message_template="Storage failure while writing {file}: {error}"
    ),
    FrontmatterError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.WARNING,
        message_template="Invalid frontmatter in {file}: {error}"
    ),
    PermissionError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.WARNING,
        message_template="Permission denied: {file}"
    ),
    FileNotFoundError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.DEBUG,
        message_template="File not found (possibly deleted): {file}"
    ),
    UnicodeDecodeError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.DEBUG,
        message_template="Cannot decode file (binary?): {file}"
    ),
    OSError: ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.WARNING,
        message_template="OS error reading file: {file} - {error}"
    ),
}


def get_policy(error: Exception) -> ErrorPolicy:
    """Look up the policy for an error (or its base classes)."""
    for error_type, policy in ERROR_POLICIES.items():
        if isinstance(error, error_type):
            return policy
    
    # Default policy for unknown errors
    return ErrorPolicy(
        action=ErrorAction.SKIP,
        log_level=logging.ERROR,
        message_template="Unexpected error: {file} - {error}"
    )


def handle_error(
    error: Exception,
    file_path: Optional[str] = None,
    context: str = ""
) -> ErrorAction:
    """
    Handle an error according to the defined policies.
    
    Args:
        error: The exception that occurred
        file_path: Path of the document being processed (if applicable)
        context: Additional context for logging
    
    Returns:
        The action to take (SKIP, RETRY, ABORT)
    """
    policy = get_policy(error)
    
    file_str = str(file_path) if file_path else "<unknown>"
    message = policy.message_template.format(file=file_str, error=str(error))
    if context:
        message = f"[{context}] {message}"
    
    logger.log(policy.log_level, message)
    
    return policy.action
