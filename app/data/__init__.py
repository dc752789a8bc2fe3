"""Data module - baseline plan records."""
from app.data import models

__all__ = ["models"]
