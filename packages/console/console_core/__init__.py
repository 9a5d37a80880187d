"""
Multi-tenant SaaS console core.

Resolves which organization a signed-in user operates in and runs the
organization's streaming AI chat against the hosted backend.
"""

__version__ = "0.1.0"
