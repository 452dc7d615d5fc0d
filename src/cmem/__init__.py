"""cmem — file-backed project memory for AI coding assistants."""

__version__ = "1.0.0"
