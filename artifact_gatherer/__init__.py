"""Artifact gathering engine for remotely instrumented browsers."""

__version__ = "0.1.0"
