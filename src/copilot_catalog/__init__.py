"""
copilot-catalog -- cached, quota-aware catalog of Copilot customizations.
"""

__version__ = "0.3.0"
