"""
Resumable sync of a JavDB account's collections (watched, want-to-watch,
lists and favorite actors) into local JSON files.
"""

__version__ = "1.0.0"
