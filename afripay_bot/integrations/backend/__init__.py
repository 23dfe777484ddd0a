"""REST client for the transaction backend."""
