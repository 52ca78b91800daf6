"""Personal control plane that routes chat commands to LLM backends."""

__version__ = "0.1.0"
