"""playbookd: learned procedures for AI agents, with outcome-weighted retrieval."""

__version__ = "0.1.0"

from playbookd.core.errors import (  # noqa: E402
    ConfigError,
    EmbeddingError,
    NotFoundError,
    PlaybookError,
    SearchIndexError,
    StorageError,
    ValidationError,
)
from playbookd.core.manager import ManagerConfig, PlaybookManager  # noqa: E402
from playbookd.core.schema import ExecutionRecord, Outcome, Playbook, Status, Step  # noqa: E402

__all__ = [
    "ConfigError",
    "EmbeddingError",
    "ExecutionRecord",
    "ManagerConfig",
    "NotFoundError",
    "Outcome",
    "Playbook",
    "PlaybookError",
    "PlaybookManager",
    "SearchIndexError",
    "Status",
    "Step",
    "StorageError",
    "ValidationError",
    "__version__",
]
