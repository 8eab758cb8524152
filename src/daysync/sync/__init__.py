"""
Sync subsystem.

Components:
- operations.py: pending-operation model and typed payloads (JSON at the storage boundary)
- coordinator.py: per-mutation policy, queue replay, id reconciliation, retry ceiling
"""
