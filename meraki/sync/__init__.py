"""Replica synchronization.

Conflict resolver (pure), remote transports, and the coordinator that drives one
push+pull cycle at a time against the backend.
"""
