"""
Test suite for the Respon Warga coordination backend.

This package contains:
- conftest.py: in-memory Realtime Database, patched Firebase Auth/Storage, seeded world
- test_*_api.py: endpoint tests per resource (operations, teams, assignments,
  field reports, citizen reports, notifications, crowdsourcing, map)
- test_validators.py, test_geo.py, test_rbac.py: pure helper tests

Run tests (from the repository root):
    pip install -e .[test]
    python -m pytest
"""
