"""Transport abstractions and the Telegram adapter."""
