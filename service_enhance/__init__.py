"""
Prompt Enhance Gateway service package.

The gateway fronts anonymous browser-extension clients, enforcing:
- Origin allow-listing and CORS for every route
- Human verification before a session token is issued
- A fixed daily quota per (subject, client IP)
- Usage accounting per subject

Structure:
- app.main: FastAPI app, routes, and middleware wiring.
- app.adapters: HTTP clients for the upstream API and the verification provider.
- app.actors: Per-key serialized actors.
- app.auth: Session token issuance and verification.
- app.cors: Origin gate.
- app.domain: Request models and the enhance proxy.
- app.ratelimit: Daily quota actors.
- app.storage: Counter storage backends.
- app.usage: Usage aggregation.
"""
