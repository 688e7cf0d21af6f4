"""Contracts for document side effects.

Rendering approval documents and storing uploaded files happen outside the
workflow core; the engine only calls these interfaces.
"""
from typing import Protocol


class DocumentGenerator(Protocol):
    """Produces the approval artifact of a VP-approved change request.

    Implementations register the generated file as a PDF_APPROVAL document.
    """

    def generate_approval_document(self, cr_id: str) -> str:
        """Generate the artifact and return its storage reference."""
        ...


class FileStorage(Protocol):
    """Blob storage for uploaded attachments."""

    def upload(self, name: str, data: bytes, mime_type: str) -> str:
        """Store ``data`` and return its storage path."""
        ...

    def download(self, path: str) -> bytes: ...

    def delete(self, path: str) -> None: ...


def attachment_blob_name(cr_id: str, file_name: str, timestamp_ms: int) -> str:
    """Storage name for an uploaded attachment, unique per upload."""
    return f"attachments/{cr_id}/{timestamp_ms}-{file_name}"
