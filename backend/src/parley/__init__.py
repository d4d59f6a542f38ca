"""Parley realtime messaging package."""
