"""Login, PIN verification and registration against the backend."""
