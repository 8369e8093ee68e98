"""Samvad messaging backend: contacts, conversations and messages."""
