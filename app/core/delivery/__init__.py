"""Grouped media delivery."""
