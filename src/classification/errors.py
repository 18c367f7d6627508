"""Exceptions raised by the RAG classification engine.

Request-level errors abort a run before any store is evaluated. Store-level
errors (RAGEngineError subclasses) are caught per store and reported in the
result instead of aborting the batch.
"""


class RAGEngineError(Exception):
    """Base class for engine errors."""


class UnknownTierError(RAGEngineError, ValueError):
    """A tier label has no entry in the threshold table."""

    def __init__(self, tier, known=None):
        self.tier = tier
        self.known = sorted(known) if known else []
        msg = f"Unknown partner brand tier: {tier!r}"
        if self.known:
            msg += f" (configured tiers: {', '.join(self.known)})"
        super().__init__(msg)


class MissingTierError(RAGEngineError, ValueError):
    """A store lists no tier and no missing_tier_default is configured."""

    def __init__(self, store_id):
        self.store_id = store_id
        super().__init__(
            f"Store {store_id} has no partner brand tier and no missing_tier_default is set"
        )


class InvalidRequestError(ValueError):
    """A request parameter (window, status, granularity) is not recognised."""
