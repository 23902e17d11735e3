"""
tilevault: an offline cache for regional tile archives with HTTP Range emulation.
"""

__version__ = "0.3.0"
