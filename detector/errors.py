from __future__ import annotations

import enum


class ErrorType(str, enum.Enum):
    NETWORK = "network"
    MODEL = "model"
    FILE = "file"
    PROCESSING = "processing"


class DemoError(Exception):
    """Base class for errors surfaced to the user as a status message."""

    kind: ErrorType | None = None


class NetworkError(DemoError):
    kind = ErrorType.NETWORK


class ModelError(DemoError):
    kind = ErrorType.MODEL


class FileError(DemoError):
    kind = ErrorType.FILE


class ProcessingError(DemoError):
    kind = ErrorType.PROCESSING


_MESSAGES = {
    ErrorType.NETWORK: "Network error. Please check your connection and try again.",
    ErrorType.MODEL: "Error loading model. Please refresh the page or try again later.",
    ErrorType.FILE: "Error processing your file. Please try another image.",
    ErrorType.PROCESSING: "Error while detecting objects. Please try again.",
}


def status_for_error(error: BaseException, kind: ErrorType | None = None) -> str:
    """User-facing status for an error; ``kind`` overrides the error's own category."""
    if kind is None:
        kind = getattr(error, "kind", None)
    if kind in _MESSAGES:
        return _MESSAGES[kind]
    return f"An unexpected error occurred: {error}"
