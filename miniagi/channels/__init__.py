"""Chat channels and streaming rendering."""
