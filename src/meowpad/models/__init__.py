"""Data models for meowpad."""
