"""webhookbot: post into chat conversations from any HTTP caller."""

__version__ = "0.1.0"
