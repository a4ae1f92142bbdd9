"""Text-to-speech adapters and the synthesis readiness gate."""
