"""Page capture: full-page screenshots of arbitrary URLs from headless Chromium."""

__version__ = "1.0.0"
