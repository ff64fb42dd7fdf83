"""Chat Relay backend.

Real-time presence and chat relay served over WebSockets, with a durable
recent-history replay backed by DuckDB.
"""

__version__ = "0.1.0"
