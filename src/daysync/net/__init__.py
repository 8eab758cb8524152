"""
Network collaborators of the sync core.

Components:
- remote_client.py: httpx client for the remote todo API (+ unconfigured stand-in)
- connectivity.py: online/offline signal (manual and TCP-probe implementations)
"""
