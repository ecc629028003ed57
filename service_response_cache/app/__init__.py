"""
Response cache service package for the Access layer.

The cache sits between the router and route handlers. For eligible GET
requests it serves a previously stored body instead of re-running the handler
and answers conditional requests (If-Modified-Since) with 304.

Structure:
- app.main: FastAPI host service, admin routes and middleware wiring.
- app.caching: Eligibility, key derivation, stores and the middleware itself.
"""
