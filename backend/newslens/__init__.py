"""
NewsLens - topic canonicalization and diversified personal ranking.
"""

__version__ = "0.1.0"
