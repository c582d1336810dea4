"""Albert - OAuth 2.0 gated ability server for AI assistants.

Exposes named abilities to MCP clients. Every tool call is authenticated by the
embedded OAuth 2.0 authorization/resource server and dispatched through the
guarded-execute pipeline.

Created: 2026-10-02
"""

__version__ = "1.0.0"
