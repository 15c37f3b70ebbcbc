"""Durable memory: tasks, touches, profiles and daily notes."""
