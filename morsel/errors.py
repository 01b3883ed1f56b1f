"""Errors raised by the mapper itself. Driver errors propagate unchanged."""


class MorselError(Exception):
    """Base class for morsel errors."""


class PieceNotFoundError(MorselError):
    """Raised when the document behind a piece no longer exists."""

    def __init__(self, collection_name: str, doc_id):
        super().__init__(f"No document with _id={doc_id!r} in collection {collection_name!r}")
        self.collection_name = collection_name
        self.doc_id = doc_id


class WrapError(MorselError, TypeError):
    """Raised when a value cannot be stored in, or restored from, a document."""
