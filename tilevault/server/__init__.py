"""
Server Layer.

This package exposes the fetch interceptor and region management as a local
aiohttp proxy server.
"""

from .proxy import create_app

__all__ = ["create_app"]
