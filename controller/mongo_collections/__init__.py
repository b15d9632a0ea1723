"""
mongo-collections controller.

Keeps MongoDB collections and their indexes in sync with MongoCollection
custom resources.
"""

__version__ = "1.0.0"
