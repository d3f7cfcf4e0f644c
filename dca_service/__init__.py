"""Trend-gated DCA engine and trailing-stop service."""

__version__ = "0.1.0"
