"""FastAPI server exposing the bill tracker to every dashboard surface."""

from server.app import create_app
from server.config import Settings

__all__ = ["create_app", "Settings"]
