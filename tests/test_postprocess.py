import pytest

from wabridge.agent.postprocess import (
    MAX_CHUNK_CHARS,
    MediaReference,
    extract_media,
    process_response,
    split_message,
)


def _image(tmp_path, name: str) -> str:
    path = tmp_path / name
    path.write_bytes(b"\x89PNG fake")
    return str(path)


def test_valid_tags_are_extracted_in_order(tmp_path):
    first = _image(tmp_path, "chart.png")
    second = _image(tmp_path, "photo.JPG")
    text = f"Here you go:\n[IMAGE: {first}]\nand also [file:{second}] done."

    clean, media = extract_media(text)

    assert [m.path for m in media] == [first, second]
    assert media[0] == MediaReference(path=first, extension=".png")
    assert media[1].extension == ".jpg"
    assert media[1].filename == "photo.JPG"
    assert "[" not in clean
    assert clean.startswith("Here you go:")
    assert clean.endswith("done.")


def test_missing_and_unsupported_tags_are_removed(tmp_path):
    pdf = tmp_path / "report.pdf"
    pdf.write_text("pdf")
    text = f"A [IMAGE: {tmp_path}/nope.png] B [FILE: {pdf}] C"

    clean, media = extract_media(text)

    assert media == []
    assert clean == "A  B  C"


def test_tag_removal_collapses_blank_lines(tmp_path):
    img = _image(tmp_path, "a.webp")
    clean, media = extract_media(f"Top\n\n[IMAGE: {img}]\n\n\nBottom\n")
    assert len(media) == 1
    assert clean == "Top\n\nBottom"


def test_text_without_tags_is_unchanged():
    assert extract_media("plain answer") == ("plain answer", [])


def test_split_message_exact_boundaries():
    text = "a" * 9000
    chunks = split_message(text)
    assert [len(c) for c in chunks] == [MAX_CHUNK_CHARS, MAX_CHUNK_CHARS, 1000]
    assert "".join(chunks) == text


def test_split_message_short_and_empty():
    assert split_message("hi") == ["hi"]
    assert split_message("x" * 4000) == ["x" * 4000]
    assert split_message("") == []


def test_split_message_rejects_non_positive_limit():
    with pytest.raises(ValueError):
        split_message("abc", 0)


def test_process_response_combines_extraction_and_chunking(tmp_path):
    img = _image(tmp_path, "out.jpeg")
    processed = process_response(f"{'b' * 12}\n[IMAGE: {img}]", max_chars=5)
    assert processed.text == "b" * 12
    assert processed.chunks == ["bbbbb", "bbbbb", "bb"]
    assert [m.path for m in processed.media] == [img]


def test_process_response_media_only_has_no_chunks(tmp_path):
    img = _image(tmp_path, "only.png")
    processed = process_response(f"[IMAGE: {img}]")
    assert processed.chunks == []
    assert len(processed.media) == 1
