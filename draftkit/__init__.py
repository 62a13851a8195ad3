"""Helpers for rendering deployment and workflow templates, prompting for their variables and setting up Azure access."""

__version__ = "0.1.0"