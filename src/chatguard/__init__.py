"""Chatguard: chat logging, profanity flagging and a searchable chat archive."""
