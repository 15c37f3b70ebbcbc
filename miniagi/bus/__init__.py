"""Message bus types."""
