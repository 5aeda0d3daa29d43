"""
REST routes for the ICU dispatch API.
"""
