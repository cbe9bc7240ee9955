"""Standalone maintenance tools."""
