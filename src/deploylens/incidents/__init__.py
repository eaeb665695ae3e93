"""Incident forensics and recommendations."""
