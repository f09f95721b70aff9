from __future__ import annotations

import numpy as np

from telephony.g711 import PcmToUlawConverter, frame_bytes, ulaw_decode, ulaw_encode


def test_ulaw_encode_decode_shape_and_types() -> None:
    # 20ms of 8kHz samples
    pcm = (np.sin(np.linspace(0, 2 * np.pi, 160, endpoint=False)) * 12000).astype(np.int16)

    ulaw = ulaw_encode(pcm)
    assert isinstance(ulaw, bytes | bytearray)
    assert len(ulaw) == pcm.size

    decoded = ulaw_decode(ulaw)
    assert decoded.dtype == np.int16
    assert decoded.shape == pcm.shape


def test_ulaw_encode_decode_silence_is_stable() -> None:
    pcm = np.zeros(320, dtype=np.int16)
    ulaw = ulaw_encode(pcm)
    decoded = ulaw_decode(ulaw)

    # Mu-law isn't perfectly invertible, but silence should stay near zero.
    assert int(np.max(np.abs(decoded))) <= 200


def test_frame_bytes_for_twenty_millisecond_frames() -> None:
    assert frame_bytes(20) == 160


def test_converter_carries_split_samples_and_resamples() -> None:
    pcm = (np.sin(np.linspace(0, 2 * np.pi, 480, endpoint=False)) * 8000).astype("<i2").tobytes()
    converter = PcmToUlawConverter(24000)

    first = converter.feed(pcm[:481])
    second = converter.feed(pcm[481:])

    # 480 samples at 24 kHz -> 160 samples at 8 kHz, split across the two chunks.
    assert len(first) + len(second) == 160
    assert converter.feed(b"") == b""
