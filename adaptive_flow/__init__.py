"""
Adaptive Flow - conditional, looping and variable-driven steps for AI-assisted browser tests.
"""

__version__ = "0.1.0"
