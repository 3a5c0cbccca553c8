"""Command-line interface for nestdeploy."""
