"""Manifest and lockfile parsers."""
