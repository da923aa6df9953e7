"""
contentflow - durable content pipeline engine with an AI tool-calling step.
"""

__version__ = "0.1.0"
