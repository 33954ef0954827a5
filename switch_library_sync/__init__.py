"""
switch-library-sync - reconcile a local Switch game library with the title database.
"""

__version__ = "0.1.0"
