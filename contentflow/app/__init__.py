"""
Application layer: pipeline engine, AI conversation, built-in steps and bootstrap.
"""
