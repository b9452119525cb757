"""Operational entry points (migrations, one-shot sweeps)."""
