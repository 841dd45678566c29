"""Denylist gate for git pushes: refuse protected refs and known-bad commits."""

__version__ = "0.1.0"
