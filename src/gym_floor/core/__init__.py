"""Core configuration for the Gym Floor service."""
