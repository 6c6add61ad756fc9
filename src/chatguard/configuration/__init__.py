"""Configuration loading for Chatguard."""
