"""CLI commands for clusterup."""
