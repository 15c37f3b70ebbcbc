"""Agent core: event bridge, context and tools."""
