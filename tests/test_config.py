from kb_ingest.config import DEFAULT_CONFIG, load_config
from kb_ingest.errors import LimitExceededError, UpstreamError, ValidationError


def test_defaults_without_file(tmp_path):
    cfg = load_config(tmp_path / "missing.yaml")
    assert cfg == DEFAULT_CONFIG
    assert cfg is not DEFAULT_CONFIG


def test_file_values_merge_over_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("chunking:\n  overlap_ratio: 0.2\nretrieval:\n  top_k: 8\n", encoding="utf-8")

    cfg = load_config(path)
    assert cfg["chunking"]["overlap_ratio"] == 0.2
    assert cfg["chunking"]["max_chunk_size"] == 2000
    assert cfg["retrieval"] == {"top_k": 8, "min_query_chars": 6}
    assert DEFAULT_CONFIG["chunking"]["overlap_ratio"] == 0.10


def test_empty_file_gives_defaults(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("", encoding="utf-8")
    assert load_config(path) == DEFAULT_CONFIG


def test_error_payloads():
    assert ValidationError("bad input").to_dict() == {
        "status": "error",
        "error_code": "VALIDATION_ERROR",
        "message": "bad input",
    }

    limit = LimitExceededError("full", limit=10, current=10).to_dict()
    assert limit["error_code"] == "LIMIT_EXCEEDED"
    assert limit["details"] == "current=10 limit=10"

    upstream = UpstreamError("store down", cause=ConnectionError("x"), inserted_ids=["d1"])
    assert upstream.to_dict()["inserted_ids"] == ["d1"]
    assert "ConnectionError" in upstream.to_dict()["details"]
