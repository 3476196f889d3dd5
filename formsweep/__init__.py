"""
formsweep - scheduled cleanup of abandoned public-form sessions
"""

__version__ = "1.0.0"
