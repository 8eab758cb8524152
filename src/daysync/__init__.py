"""
daysync: offline-first sync engine for dated task lists.

Components:
- tasks/: task model, SQLite store (tasks + pending-operation queue), small helpers
- sync/: operation payloads and the sync coordinator (mutations, queue replay)
- net/: remote HTTP client and connectivity signal
- core/: ports (Protocols) and AppState
- cli/, connectors/: composition root, slash commands, console REPL, background loop
"""
