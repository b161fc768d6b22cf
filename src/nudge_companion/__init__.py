"""nudge: a reminder and routine assistant driven by a tool-calling chat model."""

__version__ = "0.1.0"
