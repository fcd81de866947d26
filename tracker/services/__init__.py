"""Tracker services."""
