"""PCM16 decoding for speech playback in the browser (WebAudio float buffers)."""

import sys
from array import array

from settings import TTS_SAMPLE_RATE


def decode_pcm16(data):
    """Decode little-endian signed 16-bit mono PCM into floats in [-1.0, 1.0).

    A trailing odd byte is ignored.
    """
    samples = array("h")
    samples.frombytes(data[: len(data) - (len(data) % 2)])
    if sys.byteorder != "little":
        samples.byteswap()
    return [s / 32768.0 for s in samples]


def playback_payload(data, sample_rate=TTS_SAMPLE_RATE):
    samples = decode_pcm16(data)
    return {
        "sample_rate": sample_rate,
        "channels": 1,
        "duration": round(len(samples) / sample_rate, 3),
        "samples": samples,
    }
