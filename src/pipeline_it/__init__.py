"""Test resource lifecycle managers and a condition-driven pipeline operator."""

__version__ = "0.3.0"
