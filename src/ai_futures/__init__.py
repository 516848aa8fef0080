"""AI-assisted perpetual swap trading with risk-constrained execution."""

__version__ = "0.1.0"
