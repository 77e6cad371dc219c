"""Two-tower embedding recommenders for MovieLens-100K."""

__version__ = "0.1.0"
