"""Store integrations."""
