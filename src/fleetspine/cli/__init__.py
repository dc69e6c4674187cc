"""Command-line entry point (``fleetspine``)."""
