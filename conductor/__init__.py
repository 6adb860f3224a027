"""Conductor support center service."""
