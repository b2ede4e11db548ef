"""Core configuration, errors, metrics and health probes."""
