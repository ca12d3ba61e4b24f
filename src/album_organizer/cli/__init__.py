"""Command line interface for Album Organizer."""
