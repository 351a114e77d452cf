"""Transport adapters used by the buffet service."""

from .mqtt import MQTTClient, MQTTConnectionError

__all__ = ["MQTTClient", "MQTTConnectionError"]
