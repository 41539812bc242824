"""LLM provider client and tool execution."""
