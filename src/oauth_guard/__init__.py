"""oauth-guard: OAuth 2.0 token lifecycle core."""

__version__ = "0.1.0"
