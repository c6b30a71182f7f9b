"""Upstream HTTP collaborators."""
