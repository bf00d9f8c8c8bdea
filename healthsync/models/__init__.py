"""Pydantic models shared by the HTTP boundary, the storage layer and the client."""
