"""Gym Floor: equipment access contention engine."""
