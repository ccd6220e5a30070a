import pytest

from kb_ingest.chunking.chunker import DocumentChunker, chunk_document
from kb_ingest.errors import ValidationError

SENTENCE = "Knowledge bases help the assistant answer product questions."


def _sentences(total_chars: int) -> str:
    return " ".join([SENTENCE] * (total_chars // len(SENTENCE) + 2))[:total_chars]


def _mixed_document() -> str:
    paragraphs = []
    for i in range(12):
        words = " ".join(f"word{i}_{j}" for j in range(20 + 9 * i))
        paragraphs.append(f"Section {i}. {words}. Closing remark {i}!")
    return "\n\n".join(paragraphs)


def _assert_index_invariants(chunks):
    total = len(chunks)
    assert [c.chunk_index for c in chunks] == list(range(total))
    assert all(c.chunk_total == total for c in chunks)


# --- Contract -------------------------------------------------------------------

def test_empty_and_whitespace_yield_no_chunks():
    assert chunk_document("", 500) == []
    assert chunk_document("   \n\t \n", 500) == []


def test_short_text_is_a_single_chunk():
    chunks = chunk_document("  Hello world.  ", 500)
    assert len(chunks) == 1
    assert chunks[0].text == "Hello world."
    assert chunks[0].chunk_index == 0
    assert chunks[0].chunk_total == 1


def test_text_exactly_target_is_a_single_chunk():
    text = "a" * 500
    assert len(chunk_document(text, 500)) == 1


def test_rejects_non_positive_target():
    with pytest.raises(ValidationError):
        chunk_document("some text", 0)


def test_rejects_bad_ratios():
    with pytest.raises(ValidationError):
        DocumentChunker(overlap_ratio=1.0)
    with pytest.raises(ValidationError):
        DocumentChunker(lookback_ratio=0)


# --- Properties -----------------------------------------------------------------

@pytest.mark.parametrize("target", [120, 500, 1000])
def test_index_total_and_size_bounds(target):
    chunks = chunk_document(_mixed_document(), target)
    _assert_index_invariants(chunks)
    assert all(c.text for c in chunks)
    assert all(len(c.text) <= target for c in chunks)


@pytest.mark.parametrize("target", [120, 500, 1000])
def test_every_non_whitespace_character_is_covered(target):
    text = _mixed_document()
    chunks = chunk_document(text, target)
    covered = set()
    for c in chunks:
        covered.update(range(c.start_offset, c.end_offset))
        assert c.text == text[c.start_offset:c.end_offset].strip()
    missing = [i for i, ch in enumerate(text) if not ch.isspace() and i not in covered]
    assert missing == []


def test_chunking_is_idempotent():
    text = _mixed_document()
    assert chunk_document(text, 500) == chunk_document(text, 500)


def test_consecutive_chunks_overlap():
    chunks = chunk_document(_sentences(3000), 1000)
    for prev, nxt in zip(chunks, chunks[1:]):
        assert nxt.start_offset < prev.end_offset
        assert nxt.start_offset > prev.start_offset


def test_no_overlap_when_ratio_is_zero():
    chunks = DocumentChunker(overlap_ratio=0).chunk_document(_sentences(3000), 1000)
    for prev, nxt in zip(chunks, chunks[1:]):
        assert nxt.start_offset >= prev.end_offset


# --- Boundary preference --------------------------------------------------------

def test_prefers_paragraph_breaks():
    first = " ".join(["alpha"] * 120)
    second = " ".join(["beta"] * 100)
    chunks = chunk_document(f"{first}\n\n{second}", 1000)
    assert len(chunks) == 2
    assert chunks[0].text == first
    assert chunks[1].text.endswith("beta")


def test_prefers_sentence_ends_over_words():
    chunks = chunk_document(_sentences(3000), 1000)
    assert all(c.text.endswith(".") for c in chunks[:-1])


def test_falls_back_to_word_boundaries():
    text = " ".join(["lorem"] * 400)
    chunks = chunk_document(text, 500)
    assert all(c.text.startswith("lorem") and c.text.endswith("lorem") for c in chunks)


def test_hard_cuts_text_without_whitespace():
    chunks = chunk_document("x" * 5000, 1000)
    assert len(chunks) == 5
    assert all(len(c.text) == 1000 for c in chunks)
    _assert_index_invariants(chunks)


def test_plain_text_of_3000_chars_gives_three_or_four_chunks():
    chunks = chunk_document(_sentences(3000), 1000)
    assert 3 <= len(chunks) <= 4
    assert all(len(c.text) <= 1000 for c in chunks)
