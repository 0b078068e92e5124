"""Dual-backend key-value storage: the JSON primary store and the SQLite blob store."""
