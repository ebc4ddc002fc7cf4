"""Game model, codec, configuration and error types."""
