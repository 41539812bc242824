"""
Adaptive UI orchestration service.

Registers Web-of-Things devices, capability services and Thing Descriptions,
asks an LLM for a device-specific UI document and delivers it live.
"""

__version__ = "0.1.0"
