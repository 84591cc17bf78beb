"""
History module: durable, size-bounded storage of chat messages.
"""
