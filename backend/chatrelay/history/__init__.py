"""Persisted chat history.

Messages are appended to a DuckDB table and replayed to newly joined
connections. Nothing is ever updated or deleted.
"""
