"""Infrastructure layer: persistence, provider client, observability."""
