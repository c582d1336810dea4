# Albert HTTP API
# Created: 2026-10-05
#
# FastAPI application: OAuth2 endpoints, the MCP endpoint and admin routes,
# all mounted under /api/v1/, plus discovery documents under /.well-known/.
