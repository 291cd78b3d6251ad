"""Command line interface for administering the identity store."""
