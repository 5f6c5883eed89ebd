"""
RABS Loom
Blueprint registry.
"""
