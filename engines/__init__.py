"""Learning engine: mode classification, provider routing, prompts and analytics."""
