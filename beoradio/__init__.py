"""BeoSound 5c room radio — continuous playback for one room."""

__version__ = "0.1.0"
