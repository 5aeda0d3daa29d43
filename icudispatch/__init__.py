"""
ICU bed reservation and ambulance dispatch backend.
"""

__version__ = "1.0.0"
