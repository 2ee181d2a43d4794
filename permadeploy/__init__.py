"""Command line interface for permadeploy."""
