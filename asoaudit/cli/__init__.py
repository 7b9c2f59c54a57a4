"""Command-line interface for asoaudit."""
