"""CLI command modules for sphair-sync."""
