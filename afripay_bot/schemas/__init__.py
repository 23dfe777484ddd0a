"""Pydantic schemas: events, inbound messages, backend payloads, quotes."""
