"""Publish workflow: overwrite policy, index synchronization, services."""

from .chart_archive import ChartArchive, load_chart_archive, read_chart_archive
from .publisher import (ALREADY_EXISTS_MESSAGE, FLAG_CONFLICT_MESSAGE,
                        ArtifactPublisher, OverwriteMode, PublishPolicy,
                        PublishResult)
from .service import (ChartRepositoryService, DeleteOutcome, PushOutcome,
                      entry_urls)
from .synchronizer import IndexSynchronizer

__all__ = [
    "ALREADY_EXISTS_MESSAGE",
    "FLAG_CONFLICT_MESSAGE",
    "ArtifactPublisher",
    "ChartArchive",
    "ChartRepositoryService",
    "DeleteOutcome",
    "IndexSynchronizer",
    "OverwriteMode",
    "PublishPolicy",
    "PublishResult",
    "PushOutcome",
    "entry_urls",
    "load_chart_archive",
    "read_chart_archive",
]
