"""
duet - dual-stream meeting audio capture, merge and speaker attribution.
"""

__version__ = "0.1.0"
