# smart_intake/__init__.py
"""Streaming intake pipeline for healthcare real-estate deal documents."""
