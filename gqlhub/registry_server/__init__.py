"""
GQLHub Registry Server - schema registry core for GraphQL platforms.

This package accepts incoming GraphQL schemas (single-service, federated or
stitched), validates and composes them, diffs them against prior versions
and decides whether a check, publish or delete operation is accepted.

Architecture:
    ┌─────────────┐     ┌──────────────────┐     ┌──────────────────┐
    │  Caller     │────▶│ SchemaPublisher  │────▶│  RegistryModel   │
    │ (API / CI)  │     │ (lock, idempot.) │     │ (single/fed/st.) │
    └─────────────┘     └────────┬─────────┘     └────────┬─────────┘
                                 │                        │
                                 │                        ▼
                                 │               ┌──────────────────┐
                                 │               │  RegistryChecks  │
                                 │               │ checksum / diff  │
                                 │               │ composition ...  │
                                 │               └────────┬─────────┘
                                 ▼                        ▼
                        ┌─────────────────┐      ┌──────────────────┐
                        │ Storage  / CDN  │      │   Orchestrator   │
                        │ GitHub / alerts │      │ (composition svc)│
                        └─────────────────┘      └──────────────────┘

Invariants:
    - Publishes and deletes on one target are strictly serialized
    - Registry checks never raise for expected failures, they return
      a tagged result (completed / failed / skipped)
    - SchemaVersions are immutable apart from the legacy valid flag
    - CDN artifacts are written only after the version is durable

How to change safely:
    - Keep the legacy/modern split confined to the model accept/reject
      predicates in registry/models/model.py
    - Add new checks to RegistryChecks, never to the publisher
    - Cover every change to publish conclusions with truth-table tests
"""

from ._version import __version__

__all__ = ["__version__"]
