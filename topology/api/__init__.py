"""Admin HTTP API of the topology service."""
