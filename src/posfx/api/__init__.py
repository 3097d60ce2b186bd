"""Automation API -- JSON routes and WebSocket rate feed."""
