"""API v1 Route modules."""

from backend.routers.v1 import admin, appraisals, audit, auth, cycles, employees, roles

__all__ = ["admin", "appraisals", "audit", "auth", "cycles", "employees", "roles"]
