"""
dubsync-cli: acquire segmented, encrypted streaming tracks across language
variants, align them by audio fingerprint, and mux them into one file.
"""

__version__ = "0.4.0"
