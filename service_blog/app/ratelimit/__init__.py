"""
Rate limiting package for the blog service.

Holds the fixed window gate, its process-local fallback counter and the
middleware that enforces per-client request budgets.
"""
