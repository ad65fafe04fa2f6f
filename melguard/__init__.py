"""
MEL Guard - Minimum Equipment List monitoring for hospital sectors
Version: 1.1.0
"""

__version__ = "1.1.0"
