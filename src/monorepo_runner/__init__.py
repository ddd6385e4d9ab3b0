"""Dependency-ordered task runner for JavaScript monorepos."""

__version__ = "0.1.0"
