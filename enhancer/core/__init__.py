"""Core settings, constants, errors and monitoring."""
