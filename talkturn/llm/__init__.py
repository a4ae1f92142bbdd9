"""Response service adapters."""
