"""Audio segmentation. ``AudioCapture`` lives in ``chunkscribe.audio.capture``
and needs the ``capture`` extra (pyaudio)."""

from .segmenter import ChunkSegmenter, encode_wav

__all__ = ["ChunkSegmenter", "encode_wav"]
