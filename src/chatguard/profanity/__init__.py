"""Obfuscation-tolerant profanity detection."""
