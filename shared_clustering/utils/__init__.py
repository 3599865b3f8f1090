"""Utility modules for the shared clustering package."""
