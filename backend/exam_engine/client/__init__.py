from exam_engine.client.reconcile import (
    LocalAttemptState, LocalResponse, LocalSection, from_start, reconcile
)
from exam_engine.client.sync_client import AttemptSyncClient, SAVED, UNSAVED

__all__ = [
    "AttemptSyncClient", "LocalAttemptState", "LocalResponse", "LocalSection",
    "SAVED", "UNSAVED", "from_start", "reconcile",
]
