"""
Authentication package for the bearer auth client.

This package contains the session token lifecycle: secure token storage,
bearer header management and the auth orchestrator state machine.
"""
