"""Provider clients and backend wire adapters."""
