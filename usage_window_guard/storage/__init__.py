"""
Read-only access to usage logs and the event data model.
"""
