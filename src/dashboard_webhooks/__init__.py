"""Webhook event delivery service for the dashboard backend."""

__version__ = "0.1.0"
