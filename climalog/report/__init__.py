"""Rendering of summary trees."""
