"""
Configuration package.

Settings, constants and database factories.
"""
