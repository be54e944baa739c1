"""AI portrait generation backend: orchestrates third-party image providers."""

__version__ = "0.1.0"
