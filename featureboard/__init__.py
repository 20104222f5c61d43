"""Feature request board: tickets, votes, comments and image uploads."""

__version__ = "0.1.0"
