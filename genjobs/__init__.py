"""Generation job orchestrator for tool-based image and video backends"""

__version__ = "1.0.0"
