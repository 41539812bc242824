"""Core-side generation pipeline: device selection, context gathering, binding."""
