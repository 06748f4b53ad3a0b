"""AlphaDesk: social-sentiment signal-to-decision trading engine."""

__version__ = "0.3.0"
