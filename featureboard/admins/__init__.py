"""System administrator management."""

from .models import SystemAdmin
from .repository import AdminRepository
from .service import AdminService

__all__ = ["AdminRepository", "AdminService", "SystemAdmin"]
