"""Exception types shared by the pipeline components."""


class DocRagError(Exception):
    """Base class for all pipeline errors."""


class InvalidConfig(DocRagError):
    """Bad chunking parameters or a missing required setting."""


class UnsupportedProvider(DocRagError):
    """The configured provider name has no client implementation."""


class EmbeddingError(DocRagError):
    """The embedding provider failed or returned no usable vector."""


class GenerationError(DocRagError):
    """The chat-completion provider failed or returned no usable answer."""


class StoreError(DocRagError):
    """The vector store rejected a request."""


class NotFound(StoreError):
    """A collection (or the documents asked for) does not exist."""


class StageFailed(DocRagError):
    """A pipeline stage failed; the underlying error is chained as __cause__."""

    def __init__(self, stage: str, error: Exception):
        self.stage = stage
        self.error = error
        super().__init__(f"{stage} failed: {error}")
