"""
MEL Guard - API Routers
Version: 1.0.0
"""
