"""Book library assistant: token-based auth and a retrieval-augmented chatbot."""

__version__ = "0.1.0"
