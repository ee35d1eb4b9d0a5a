"""Converso shared libraries.

This package contains reusable components:
- common: Application settings
- caching: Redis client management
- memory: Per-sender conversation storage
"""
