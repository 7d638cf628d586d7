"""HTTP and WebSocket control surface."""
