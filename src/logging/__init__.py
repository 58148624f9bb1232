"""Structured logging with document/listener context."""
