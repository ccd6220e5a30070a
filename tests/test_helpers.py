from kb_ingest.utils.helpers import clean_text, content_hash, load_json, save_json, truncate_text


def test_clean_text_strips_control_chars_and_blank_runs():
    raw = "  Title\x00\x07\n\n\n\nBody   text \twith  gaps  "
    assert clean_text(raw) == "Title\n\nBody text with gaps"


def test_truncate_text():
    assert truncate_text("short", 10) == "short"
    assert truncate_text("a long sentence here", 6) == "a long..."


def test_content_hash_is_stable_sha256():
    assert content_hash("abc") == "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"


def test_json_roundtrip_creates_parent_dirs(tmp_path):
    path = tmp_path / "nested" / "data.json"
    save_json({"ids": ["a", "b"], "count": 2}, path)
    assert load_json(path) == {"ids": ["a", "b"], "count": 2}
