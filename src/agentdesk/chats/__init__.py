"""Chats with workspace agents and the chat queue."""
