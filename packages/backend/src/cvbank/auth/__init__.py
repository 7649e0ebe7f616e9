"""Authentication: credentials, tokens, the session cache and the gateway.

Learn: Two layers live here.
1. Provider-side primitives (password hashing, JWT) used by the sql
   identity provider and the provider service.
2. Client-side session consistency: SessionCache holds the resolved
   identity + role, AuthGateway is the only component that writes it.
"""
