"""Rina: streams tool-using agent replies into threaded chat platforms."""

__version__ = "0.1.0"
