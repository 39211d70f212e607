"""Command-line interface for the print queue."""
