"""chunkscribe - long-form audio capture with chunked upload and ordered transcription."""

__version__ = "0.1.0"
