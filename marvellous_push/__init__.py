"""Companion notification server for Marvellous Manager."""

__version__ = "0.1.0"
