"""
HTTP API for the knowledge companion.
"""
