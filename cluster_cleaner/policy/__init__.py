"""Deletion policy: time thresholds, ownership guards and their composition."""
