"""Configuration, logging and error types shared across the service."""
