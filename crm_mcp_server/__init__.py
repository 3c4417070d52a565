"""MCP server exposing CRM contacts, notes and tasks as tools."""

__version__ = "1.0.0"
