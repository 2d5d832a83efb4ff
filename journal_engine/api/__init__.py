"""
API routes module.
"""
