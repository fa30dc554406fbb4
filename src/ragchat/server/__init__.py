"""HTTP proxy exposing chat completions with retrieval augmentation."""

from .app import create_app

__all__ = ["create_app"]
