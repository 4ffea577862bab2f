"""Capacity hierarchical cache and translation pipeline."""
