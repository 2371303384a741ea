"""Autonomous agent market simulation driving Recent Average Price (RAP)."""

__version__ = "0.1.0"
