"""Utility functions for miniagi."""
