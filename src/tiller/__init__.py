"""Tiller: terminal agent runtime with gated tool execution."""

__version__ = "0.3.0"
