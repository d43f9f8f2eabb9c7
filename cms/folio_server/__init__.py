"""
Folio Server - versioned content composition and publishing.

This package implements the storage core of a content management system:
- Records (components, layouts, pages) addressed by storage keys
- Version planes: latest, @published, and caller-chosen tags
- Read-side composition of references into full documents
- Write-side splitting of nested documents into flat records
- Atomic page publishing with url history and public uri pointers
- Scheduled publishing and outbound notifications

Architecture:
    caller ──▶ PageService.publish ──▶ url rules ──▶ component publish ops
                      │                                     │
                      ▼                                     ▼
               ReferenceResolver                   CascadingPut (split)
                      │                                     │
                      └───────────────▶ StorageEngine ◀─────┘
                                     (one atomic batch)

Invariants:
    - Every write is one storage batch; nothing is visible before it commits
    - A record's version suffix propagates to every reference it owns
    - Hook events fire after commit, never before

How to change safely:
    - Address format changes break persisted data; treat it as a schema
    - New record types need a service, a hook registry entry and tests

Version: see _version.py.
"""

from ._version import __version__

__all__ = ["__version__"]
