"""Real-time chat module.

Components:
    - PresenceRegistry: who is online, keyed by connection ID.
    - ChatRelay: per-connection state machine and broadcast fan-out.
    - router: the WebSocket endpoint that drives the relay.
"""
