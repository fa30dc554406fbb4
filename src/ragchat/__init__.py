"""Retrieval-augmented chat proxy and streaming tool-calling client."""

__version__ = "0.1.0"

__all__ = ["__version__"]
