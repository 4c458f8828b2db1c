"""
Error taxonomy.

External-service failures are raised as TransientExternalError (or its
MalformedResponseError subclass) by the thin clients and caught at the
canonicalizer / enrichment boundary, where they degrade to fallback values.
"""


class NewsLensError(Exception):
    """Base class for all NewsLens errors."""


class TransientExternalError(NewsLensError):
    """An embedding or LLM call failed, timed out, or no client is configured."""


class MalformedResponseError(TransientExternalError):
    """An external model answered, but not in the expected shape."""


class VocabularyOverflowError(NewsLensError):
    """The canonical vocabulary is above its configured cap."""

    def __init__(self, size: int, cap: int):
        super().__init__(f"canonical vocabulary size {size} exceeds cap {cap}")
        self.size = size
        self.cap = cap


class NotFoundError(NewsLensError):
    """A requested entity does not exist in the store."""
