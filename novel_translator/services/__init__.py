"""
Service layer: request scheduling, model clients, glossary merging and translation strategies.
"""
