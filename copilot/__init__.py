"""Nova: an agentic copilot for customer support operators."""

__version__ = "0.1.0"
