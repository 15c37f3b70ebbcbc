"""Session transcripts."""
