"""
Content Gateway package.

The gateway fronts a synchronous content engine, enforcing:
- Rate limiting: fixed-window counter per client, ahead of everything else
- Authentication: public allowlist, API key, JWT, anonymous reads
- Caching: in-memory TTL response cache with entity invalidation
- Circuit-breaking and timeouts for engine calls

Structure:
- app.main: FastAPI app, routes, and middleware wiring.
- app.adapters: Engine bridge and async backend executor.
- app.caching: Response cache and cache manager.
- app.ratelimit: Fixed-window limiter and request helper.
- app.domain: Auth gate.
- app.auth: Bearer token verification.
- app.content: Proxy, aggregation and cache policy.
"""
