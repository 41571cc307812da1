"""Infrastructure layer: HTTP integrations, persistence, observability."""
