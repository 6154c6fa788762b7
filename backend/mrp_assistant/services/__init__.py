"""
Service layer: reasoning engine adapters, tools, query translation and result shaping.
"""
