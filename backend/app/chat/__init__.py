"""Chats and messages: persistence, use cases and REST endpoints."""
