"""
Connectors.

- console_connector.py: interactive REPL in the main thread
- sync_runner.py: background event-loop thread hosting the sync service
"""
