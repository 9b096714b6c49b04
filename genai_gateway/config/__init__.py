"""Gateway configuration."""
