"""
Tests for the shared utility helpers.
"""

import pytest

from callscribe.utils import (
    extract_storage_filename,
    generate_16_char_uuid,
    generate_variable_char_uuid,
    is_spanish_language,
    normalize_language_code,
    parse_bool_env,
    to_est,
    to_naive,
    get_current_timestamp_est,
)


@pytest.mark.unit
def test_uuid_lengths():
    assert len(generate_16_char_uuid()) == 16
    assert generate_16_char_uuid() != generate_16_char_uuid()

    with pytest.raises(ValueError):
        generate_variable_char_uuid(33)


@pytest.mark.unit
def test_storage_filename_prefers_audio_path():
    assert extract_storage_filename("uploads/2024/abc.wav", "original.wav") == "abc.wav"
    assert extract_storage_filename(None, "original.wav") == "original.wav"
    assert extract_storage_filename(None, None) == ""


@pytest.mark.unit
@pytest.mark.parametrize(
    "language, expected",
    [("spanish", "es"), ("SPA", "es"), ("english", "en"), ("de", "de"), (None, None)],
)
def test_language_codes(language, expected):
    assert normalize_language_code(language) == expected


@pytest.mark.unit
def test_spanish_language_detection():
    assert is_spanish_language("es")
    assert is_spanish_language(" Spanish ")
    assert not is_spanish_language("en")
    assert not is_spanish_language(None)


@pytest.mark.unit
def test_parse_bool_env():
    assert parse_bool_env(None, default=True)
    assert parse_bool_env("", default=False) is False
    assert parse_bool_env("false", default=True) is False
    assert parse_bool_env("Off", default=True) is False
    assert parse_bool_env("yes", default=False)


@pytest.mark.unit
def test_to_naive_strips_timezone():
    assert to_naive(None) is None
    assert to_naive(get_current_timestamp_est()).tzinfo is None


@pytest.mark.unit
def test_to_est_restores_timezone():
    now = get_current_timestamp_est()

    assert to_est(None) is None
    assert to_est(to_naive(now)) == now
    assert to_est(now) is now
