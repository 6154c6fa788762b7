"""
Conversation driver, provider adapters and shared message models.
"""
