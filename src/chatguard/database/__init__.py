"""Durable chat history storage."""
