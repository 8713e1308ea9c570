"""Static game economy tables."""
