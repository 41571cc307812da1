"""tasteprint - Spotify listening-history sync and cached music profiles."""

__version__ = "0.1.0"
