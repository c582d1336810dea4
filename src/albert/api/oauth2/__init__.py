# Albert OAuth2 authorization and resource server.
# Created: 2026-10-04
#
# Authorization code (with PKCE) and refresh token grants. Access tokens are
# RS256 JWTs; authorization codes and refresh tokens are encrypted payloads.
