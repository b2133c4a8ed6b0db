"""
LLM translation pipeline for Japanese web novels with a shared, evolving glossary.
"""

__version__ = "0.1.0"
