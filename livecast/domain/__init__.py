"""
Domain layer containing core signaling and peer logic.

Submodules:
- signaling: Room registry and message relay (server side).
- peer: Peer sessions, negotiation, reconnection and pause/resume (client side).
- utils: Domain-specific utilities (e.g., ID generation).
"""
