"""
Research toolkit: a web-research chat agent with streamed tool calls and
owner-scoped conversation storage.
"""
