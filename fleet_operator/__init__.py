"""Desired-state controller for the cluster-tester service fleet."""
