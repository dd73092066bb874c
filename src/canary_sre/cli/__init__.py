"""Command-line interface for canary-sre."""
