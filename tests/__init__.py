"""
GQLHub Registry Test Suite.

This package contains:
- unit/: Unit tests (pure logic, in-memory collaborators, httpx.MockTransport)
- integration/: Publisher end-to-end over in-memory storage, artifacts,
  coordination and the local orchestrator
"""
