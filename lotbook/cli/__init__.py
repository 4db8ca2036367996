"""Command-line interface for Lotbook."""
