"""Data model for clusters, decisions and configuration."""
