"""
Adapters layer: concrete implementations of the ports.
"""
