"""Logging and Prometheus metrics for fleetwatch."""
