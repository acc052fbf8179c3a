"""Shared error types, ports and the application state container."""
