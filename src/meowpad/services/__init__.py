"""Service layer for meowpad."""
