"""Error taxonomy for the playbook core.

Every error raised by the core derives from ``PlaybookError`` and is chained to
its cause with ``raise ... from``.
"""


class PlaybookError(Exception):
    """Base class for all playbookd errors."""


class NotFoundError(PlaybookError, LookupError):
    """A playbook or execution record does not exist."""


class ValidationError(PlaybookError, ValueError):
    """A playbook or record failed structural validation."""


class StorageError(PlaybookError):
    """The document store failed for a reason other than not-found."""


class SearchIndexError(PlaybookError):
    """The search index failed."""


class EmbeddingError(PlaybookError):
    """The embedding provider failed or returned an unusable response."""


class ConfigError(PlaybookError, ValueError):
    """Configuration could not be loaded or is invalid."""
