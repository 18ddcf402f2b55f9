"""格式注册表与格式解析测试。"""

from __future__ import annotations

from pathlib import Path

import pytest

from image_converter.core import resolver
from image_converter.core.exceptions import ConversionError, ErrorKind
from image_converter.core.formats import (
    Capabilities,
    Format,
    all_formats,
    capabilities_of,
    default_extension_of,
    format_for_extension,
    parse_format,
)
from image_converter.core.resolver import resolve_input, resolve_output


def test_registry_covers_every_format() -> None:
    assert set(all_formats()) == set(Format)
    assert len(Format) == 15
    for fmt in Format:
        caps = capabilities_of(fmt)
        assert caps.can_decode and caps.can_encode
        assert caps.extensions


def test_extension_lookup_is_case_insensitive_and_canonical() -> None:
    assert format_for_extension("PNG") is Format.PNG
    assert format_for_extension(".Jpeg") is Format.JPEG
    assert format_for_extension("tif") is Format.TIFF
    assert format_for_extension("tiff") is Format.TIFF
    assert format_for_extension("ppm") is Format.PNM
    assert format_for_extension("txt") is None
    assert format_for_extension("") is None


def test_default_extensions() -> None:
    assert default_extension_of(Format.JPEG) == "jpg"
    assert default_extension_of(Format.TIFF) == "tiff"
    assert default_extension_of(Format.FARBFELD) == "ff"


def test_multi_frame_flags() -> None:
    assert capabilities_of(Format.GIF).is_multi_frame
    assert capabilities_of(Format.WEBP).is_multi_frame
    assert not capabilities_of(Format.JPEG).is_multi_frame
    assert not capabilities_of(Format.ICO).is_multi_frame


def test_parse_format_accepts_names_and_extensions() -> None:
    assert parse_format("jpg") is Format.JPEG
    assert parse_format("JPEG") is Format.JPEG
    assert parse_format(".exr") is Format.EXR
    assert parse_format("farbfeld") is Format.FARBFELD

    with pytest.raises(ConversionError) as excinfo:
        parse_format("psd")
    assert excinfo.value.kind is ErrorKind.UNKNOWN_FORMAT
    assert "psd" in excinfo.value.message


def test_resolve_output_without_extension_fails() -> None:
    with pytest.raises(ConversionError) as excinfo:
        resolve_output(Path("photo"), explicit_override=None)
    assert excinfo.value.kind is ErrorKind.UNKNOWN_FORMAT


def test_explicit_override_wins_over_extension() -> None:
    assert resolve_input(Path("image.png"), Format.GIF) is Format.GIF
    assert resolve_output(Path("photo"), Format.ICO) is Format.ICO
    assert resolve_input(Path("SCAN.TIF")) is Format.TIFF


def test_missing_capability_is_rejected_eagerly(monkeypatch: pytest.MonkeyPatch) -> None:
    read_only = Capabilities(can_decode=True, can_encode=False, is_multi_frame=False, extensions=("dds",))
    write_only = Capabilities(can_decode=False, can_encode=True, is_multi_frame=False, extensions=("dds",))

    monkeypatch.setattr(resolver, "capabilities_of", lambda fmt: read_only)
    with pytest.raises(ConversionError) as excinfo:
        resolve_output(Path("out.dds"))
    assert excinfo.value.kind is ErrorKind.UNSUPPORTED_OPERATION
    assert "dds" in excinfo.value.message
    assert resolve_input(Path("in.dds")) is Format.DDS

    monkeypatch.setattr(resolver, "capabilities_of", lambda fmt: write_only)
    with pytest.raises(ConversionError) as excinfo:
        resolve_input(Path("in.dds"))
    assert excinfo.value.kind is ErrorKind.UNSUPPORTED_OPERATION
