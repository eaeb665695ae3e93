"""Metric anomaly detection."""
