"""Error taxonomy for the query engine."""

from __future__ import annotations


class EngineError(Exception):
    """Base class for every failure surfaced by the query engine."""


class NotFoundError(EngineError):
    """A referenced workspace, device or product does not exist."""


class QueryValidationError(EngineError):
    """The query is malformed and was rejected before touching any store."""


class UpstreamFailure(EngineError):
    """A device, measurement or product store call failed."""


class QueryTimeout(EngineError):
    """The query deadline elapsed before every result was available."""
