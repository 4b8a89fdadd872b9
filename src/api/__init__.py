"""HTTP trigger surface."""

from .app import bearer_matches, create_app

__all__ = ["bearer_matches", "create_app"]
