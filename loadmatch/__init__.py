"""
Load matching and pricing engine for freight marketplaces.
"""

__version__ = "0.1.0"
