"""Exceptions raised by the document extraction engine."""


class ProcessingError(Exception):
    """Base exception for all document processing errors."""


class DocumentNotFoundError(ProcessingError):
    """The object store has nothing at the requested path."""


class EmptyDocumentError(ProcessingError):
    """The object store returned zero bytes, even after a retry."""


class UnreadableDocumentError(ProcessingError):
    """Document bytes could not be turned into anything the model can read."""


class ExtractionServiceError(ProcessingError):
    """The extraction service answered with a non-success status."""

    def __init__(self, status_code: int, body: str):
        self.status_code = status_code
        self.body = body
        super().__init__(f"Extraction service error {status_code}: {body}")


class JobNotFoundError(ProcessingError):
    """No job record exists for the document id."""


class InvalidTransitionError(ProcessingError, ValueError):
    """A parsing status change the lifecycle does not allow."""


class SupersededJobError(ProcessingError):
    """A newer job for the same document replaced the one writing."""
