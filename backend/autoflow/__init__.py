"""Automation workflow graph and execution coordinator."""

__version__ = "0.1.0"
