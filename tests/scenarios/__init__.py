"""Scenario tests for clusterup.

These tests run a complete `cluster up` (preflight, task list and summary)
against in-memory Docker, control-plane and cluster clients.
"""
