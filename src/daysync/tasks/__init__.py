"""
Task subsystem.

Components:
- task_models.py: data structures (Task, TaskRef, SyncStatus, RemoteTask)
- task_store.py: SQLite-backed storage for tasks and the pending-operation queue
- task_api.py: small high-level helpers used by the console (date window, id lookup)
"""
