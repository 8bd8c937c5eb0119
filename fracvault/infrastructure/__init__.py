"""Infrastructure layer: codecs, stores and adapters."""
