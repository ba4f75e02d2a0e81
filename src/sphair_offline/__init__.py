"""SPHAiR offline sync: durable operation queue and replay for the maintenance client."""

__version__ = "0.1.0"
