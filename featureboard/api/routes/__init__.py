"""Route modules exposed by the API package."""

from . import admins, comments, ping, tickets, uploads, users, votes

__all__ = ["admins", "comments", "ping", "tickets", "uploads", "users", "votes"]
