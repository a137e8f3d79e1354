"""Command line interface for node group stack management."""
