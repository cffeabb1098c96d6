"""Fetch, build, profile and package the mujs JavaScript engine."""

__version__ = "0.1.0"
