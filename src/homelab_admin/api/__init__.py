"""HTTP boundary for homelab-admin.

Exposes command start, live event streaming, stdin injection and session
polling over a small FastAPI application.
"""
