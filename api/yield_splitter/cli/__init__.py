"""Command-line interface for the yield splitter."""
