"""
HTTP and WebSocket interface for the ICU dispatch backend.
"""
