"""Tests for the server-sent event decoder."""

import pytest

from buildtrack.core.decoder import EventStreamDecoder, aiter_payloads, iter_payloads

STREAM = (
    'data: {"type":"start"}\n\n'
    ": keep-alive\n\n"
    'data: {"type":"text-delta","id":"t","delta":"héllo ✓"}\r\n\r\n'
    "data: [DONE]\n\n"
).encode()


def _decode_all(chunks):
    decoder = EventStreamDecoder()
    payloads = []
    for chunk in chunks:
        payloads.extend(decoder.feed(chunk))
    payloads.extend(decoder.close())
    return payloads


def test_decodes_frames():
    """Test frames separated by blank lines become payloads."""
    payloads = list(iter_payloads([STREAM]))

    assert payloads == [
        '{"type":"start"}',
        '{"type":"text-delta","id":"t","delta":"héllo ✓"}',
    ]


def test_split_at_every_offset():
    """Test any two-way split of the stream decodes identically."""
    expected = _decode_all([STREAM])

    for offset in range(len(STREAM) + 1):
        assert _decode_all([STREAM[:offset], STREAM[offset:]]) == expected, offset


def test_byte_at_a_time():
    """Test a stream fed one byte at a time, splitting multibyte characters."""
    chunks = [STREAM[i : i + 1] for i in range(len(STREAM))]
    assert _decode_all(chunks) == _decode_all([STREAM])


def test_multiline_data_joined():
    """Test several data lines in one frame are joined with newlines."""
    payloads = list(iter_payloads([b"data: one\ndata:two\ndata:  three\n\n"]))
    assert payloads == ["one\ntwo\n three"]


def test_comment_lines_ignored():
    """Test heartbeat comment lines never produce payloads."""
    assert list(iter_payloads([b": ping\n\n:another\n\n"])) == []


def test_unprefixed_lines_kept():
    """Test non-empty lines without a data prefix are kept as payload lines."""
    assert list(iter_payloads([b'{"type":"finish"}\n\n'])) == ['{"type":"finish"}']


def test_sentinel_stops_decoding():
    """Test nothing after the sentinel is emitted."""
    decoder = EventStreamDecoder()
    payloads = decoder.feed(b'data: {"a":1}\n\ndata: [DONE]\n\ndata: {"b":2}\n\n')

    assert payloads == ['{"a":1}']
    assert decoder.done
    assert decoder.feed(b'data: {"c":3}\n\n') == []
    assert decoder.close() == []


def test_trailing_partial_frame_flushed():
    """Test a stream that ends without a blank line still yields its last frame."""
    assert list(iter_payloads([b'data: {"a":1}\n\ndata: {"b":2}'])) == ['{"a":1}', '{"b":2}']


def test_empty_stream():
    """Test an empty stream yields nothing."""
    assert list(iter_payloads([])) == []
    assert list(iter_payloads([b"", b"\n\n"])) == []


def test_str_chunks_accepted():
    """Test text chunks decode like byte chunks."""
    assert list(iter_payloads(["data: x\n", "\n"])) == ["x"]


@pytest.mark.asyncio
async def test_async_driver():
    """Test the async driver matches the sync one."""

    async def chunks():
        for i in range(0, len(STREAM), 7):
            yield STREAM[i : i + 7]

    payloads = [p async for p in aiter_payloads(chunks())]
    assert payloads == list(iter_payloads([STREAM]))
