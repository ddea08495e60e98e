"""Betledger: exposure tracking and settlement engine for a wagering exchange."""

__version__ = "0.1.0"
__author__ = "Betledger Team"

# Settings are loaded lazily through betledger.config.get_settings()
__all__ = ["__version__", "__author__"]
