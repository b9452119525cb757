"""HTTP and WebSocket surface of the Gym Floor service."""
