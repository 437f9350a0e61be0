# app/admin/errors.py
"""
Typed errors for admin operations.

The command layer catches ``AdminError`` subtypes and turns ``detail`` into
the chat reply, without embedding authorization logic in the handlers.
"""
from __future__ import annotations


class AdminError(Exception):
    """Base class for all admin errors."""

    def __init__(self, detail: str = "Internal error"):
        self.detail = detail
        super().__init__(detail)


class ForbiddenError(AdminError):
    """Actor is not on the admin allow-list."""


class ValidationError(AdminError):
    """Invalid command argument."""
