"""Shell history sync engine.

Public API for keeping an append-only history log consistent across
machines, using a git repository as transport and durable store.

Architecture
------------
Every machine runs the same cycle against a shared remote: fetch, merge the
remote log with the local one, and publish the result.  Lines are opaque
and order-independent, so the merge is a deduplicating union that keeps the
remote order and appends lines only the local side has.  Nothing is lost
and nothing is duplicated; no global order across machines is promised.

Modules:

- ``engine``       -- ``SyncEngine``: runs one cycle.
- ``credentials``  -- ``CredentialResolver``: ordered credential providers.
- ``repository``   -- ``RepositoryManager``: GitPython-backed git layer.
- ``merger``       -- ``merge``: the deduplicating union.
- ``retry``        -- ``RetryPolicy``: capped exponential backoff.
- ``lock``         -- ``repository_lock``: single-flight advisory lock.
- ``state``        -- ``SyncState``: last agreed snapshot.
- ``models``       -- ``Credential``, ``FetchResult``, ``PushResult``,
  ``SyncReport`` and the enums.
- ``errors``       -- ``HistSyncError`` and its subclasses.
- ``reporter``     -- Human-readable and JSON report formatting.

Usage example
-------------
::

    from histsync.config import load_config
    from histsync.sync import SyncEngine, format_sync_report

    engine = SyncEngine(load_config())
    report = engine.run()
    print(format_sync_report(report))
"""

from .credentials import CredentialResolver, default_resolver
from .engine import SyncEngine
from .errors import (
    AuthError,
    CredentialError,
    HistSyncError,
    NetworkError,
    PushConflictError,
    RepositoryError,
)
from .merger import merge
from .models import (
    Credential,
    CredentialSource,
    ErrorKind,
    FetchResult,
    PushResult,
    SyncPhase,
    SyncReport,
)
from .reporter import format_sync_report, report_to_json
from .repository import RepositoryManager
from .retry import RetryPolicy
from .state import SyncState

__all__ = [
    "AuthError",
    "Credential",
    "CredentialError",
    "CredentialResolver",
    "CredentialSource",
    "ErrorKind",
    "FetchResult",
    "HistSyncError",
    "NetworkError",
    "PushConflictError",
    "PushResult",
    "RepositoryError",
    "RepositoryManager",
    "RetryPolicy",
    "SyncEngine",
    "SyncPhase",
    "SyncReport",
    "SyncState",
    "default_resolver",
    "format_sync_report",
    "merge",
    "report_to_json",
]
