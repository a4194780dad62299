"""Command-line interface for flowspine."""
