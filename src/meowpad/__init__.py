"""
meowpad - a web-aware notepad.

Records links and free-form notes, organizes them with shared tags, relates
links to each other and indexes their readable text for full-text search.
Everything lives in a single local SQLite database.
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("meowpad")
except PackageNotFoundError:
    __version__ = "0.1.0"
