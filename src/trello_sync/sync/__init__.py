"""Outline document <-> Trello board sync engine.

Architecture
------------
Each entity stores two hashes from its last successful sync: the hash of
its local content and the hash of the remote record. Each side is
compared only against its own stored hash, so a session can tell which
side changed (or both) without comparing local text to Trello JSON.

A session fetches remote state, classifies the in-scope entities, plans
a dependency graph of remote operations, and runs it concurrently under
the client's rate limits. Creates run parents first and deletes run
children first; a failure skips only its dependents.

Modules:

- ``engine``       -- ``SyncEngine``: runs one command as one session.
- ``models``       -- entities, the tree, remote records, operations and
  the ``SyncReport`` contract.
- ``identity``     -- ``IdentityMap``: local id <-> Trello id bindings.
- ``state``        -- content hashes and sync stamps.
- ``mapper``       -- Trello JSON <-> entity fields, request building.
- ``fetcher``      -- FETCH planning and snapshot ingestion.
- ``classifier``   -- per-entity change classification.
- ``resolver``     -- conflict resolution strategies.
- ``planner``      -- operation graph planning.
- ``orchestrator`` -- concurrent graph execution and session lifecycle.
- ``reporter``     -- human-readable and JSON report formatting.

Usage example
-------------
::

    from trello_sync.core.client import TrelloClient
    from trello_sync.document import OutlineDocument
    from trello_sync.sync import SyncEngine, format_sync_report

    document = OutlineDocument.load("board.org")
    engine = SyncEngine(client=trello_client, document=document)

    preview = await engine.run("sync-document", dry_run=True)
    print(format_sync_report(preview))

    report = await engine.run("sync-document")
    print(format_sync_report(report))
"""

from .engine import COMMANDS, SyncEngine
from .identity import IdentityMap
from .models import (
    Classification,
    Direction,
    Entity,
    EntityKind,
    EntityTree,
    Operation,
    Scope,
    SyncReport,
)
from .reporter import (
    format_dry_run_preview,
    format_sync_report,
    report_to_json,
)

__all__ = [
    "COMMANDS",
    "Classification",
    "Direction",
    "Entity",
    "EntityKind",
    "EntityTree",
    "IdentityMap",
    "Operation",
    "Scope",
    "SyncEngine",
    "SyncReport",
    "format_dry_run_preview",
    "format_sync_report",
    "report_to_json",
]
