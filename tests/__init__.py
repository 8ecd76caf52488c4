"""
PhotoZip Test Suite.

This package contains:
- unit/: Unit tests (in-memory object source, no network)
- integration/: Full aiohttp application against the in-memory source
"""
