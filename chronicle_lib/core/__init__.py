"""Core configuration, constants, exceptions and logging for Chronicle."""
