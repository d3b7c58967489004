"""Core configuration, constants, exceptions and types."""
