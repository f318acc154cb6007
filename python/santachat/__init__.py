"""Santachat: reliable message delivery and read state for Secret Santa pairs."""

__version__ = "0.1.0"
