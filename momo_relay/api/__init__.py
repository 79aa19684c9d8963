"""HTTP API for the payment relay."""
from .main import app, create_app

__all__ = ["app", "create_app"]
