"""Command-line interface for extbuilder."""
