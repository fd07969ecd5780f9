"""Command line interface for backup-courier."""
