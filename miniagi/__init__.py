"""
miniagi - a personal chat assistant with durable task memory.
"""

__version__ = "0.1.0"
__logo__ = "🤖"
