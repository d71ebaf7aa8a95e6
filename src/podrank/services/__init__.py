"""Stateful league services built on the pure domain layer."""
