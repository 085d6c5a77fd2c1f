"""
Shared utilities for topology processes.

- logging_config: one-call logging setup for entrypoints
"""
