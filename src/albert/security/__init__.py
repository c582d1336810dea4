# Albert security helpers: login sessions, rate limiting, audit log.
# Created: 2026-10-05
