import pytest

from mifaresam.errors import ResponseError, SamError, check_more_frames, check_status


def test_check_status_success_strips_status_word():
    assert check_status(b"\x01\x02\x90\x00") == b"\x01\x02"


def test_check_status_accepts_more_frames():
    assert check_status(b"\xAA\x90\xAF") == b"\xAA"


def test_check_status_status_only():
    assert check_status(b"\x90\x00") == b""


def test_check_status_error_word_raises_with_sw():
    with pytest.raises(ResponseError) as info:
        check_status(b"\x01\x6A\x82")
    assert info.value.sw == 0x6A82
    assert info.value.response == b"\x01\x6A\x82"


def test_check_status_short_response_raises_sam_error():
    with pytest.raises(SamError):
        check_status(b"\x90")


def test_short_response_has_no_sw():
    with pytest.raises(ResponseError) as info:
        check_status(b"")
    assert info.value.sw is None


def test_check_more_frames_returns_payload():
    assert check_more_frames(b"\x10\x20\x30\x90\xAF") == b"\x10\x20\x30"


def test_check_more_frames_rejects_final_frame():
    with pytest.raises(ResponseError):
        check_more_frames(b"\x10\x90\x00")


def test_check_more_frames_rejects_empty():
    with pytest.raises(ResponseError):
        check_more_frames(b"")