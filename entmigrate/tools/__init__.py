"""Command line tools for entmigrate."""
