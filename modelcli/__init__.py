"""model-cli: a tool-calling conversation engine for chat-completion models."""

__version__ = "0.1.0"
