"""
RADC platform: access control, identities and donation aggregation.
"""

__version__ = "0.1.0"
