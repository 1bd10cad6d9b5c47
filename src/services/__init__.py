"""Infrastructure clients for the Pulse scheduler."""
