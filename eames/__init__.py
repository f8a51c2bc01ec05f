"""Eames: autonomous product design agent."""

__version__ = "0.1.0"
