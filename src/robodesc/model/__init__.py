"""Structural robot model built from a canonical description."""
