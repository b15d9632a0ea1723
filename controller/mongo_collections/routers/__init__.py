"""
API Routers module.
"""
from mongo_collections.routers import health

__all__ = ["health"]
