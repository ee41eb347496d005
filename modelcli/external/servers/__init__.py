"""Bundled stdio tool servers used when no ``mcp.config.json`` exists."""
