"""Gatekeeper: authentication, API keys and rate limiting for a request-serving backend."""
