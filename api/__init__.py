"""HTTP API for the AI Visibility Engine."""
