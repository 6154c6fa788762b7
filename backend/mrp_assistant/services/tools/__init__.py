"""
Tool catalog and dispatcher exposed to the reasoning engine.
"""
