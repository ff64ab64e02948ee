"""Command-line entry point package for the MoE overlap model."""
