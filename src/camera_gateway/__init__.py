"""camera-gateway: camera devices exposed as command targets over MQTT."""

__version__ = "0.1.0"
