"""
carenet: appointment slot availability and health plan billing batches.
"""

__version__ = "0.1.0"
