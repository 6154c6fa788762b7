"""
MRP assistant: a tool-calling reasoning loop over the MRP document store.
"""
