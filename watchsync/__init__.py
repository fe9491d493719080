"""Watch-together session coordination and playback sync."""

__version__ = "0.1.0"
