"""
Nexus - live store for the Nexus browser.

``nexus.core`` owns the SQLite store: its location, its schema, and the
startup migration engine that brings an older store up to date.
"""

__version__ = "0.1.0"
