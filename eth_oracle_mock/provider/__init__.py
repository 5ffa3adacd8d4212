"""JSON-RPC node helpers."""
