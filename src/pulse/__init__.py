"""Pulse: autonomous agent wake scheduler."""
