"""Flexy BI chat client: realtime session, connection and chart extraction."""
