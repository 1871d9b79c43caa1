# tests/test_text.py
import re

import pytest

from social_publisher.adapters.text import hard_wrap, pack_sentences, split_into_thread, split_sentences, truncate

MARKER = re.compile(r" \(\d+/\d+\)$")


def announcement(sentences: int) -> str:
    return " ".join(f"This is sentence {i:02d} of the announcement thread." for i in range(1, sentences + 1))


def test_short_text_is_a_single_chunk_without_marker():
    assert split_into_thread("Launching today!", 280, numbered=True) == ["Launching today!"]


def test_empty_text_has_no_chunks():
    assert split_into_thread("   ", 280) == []


def test_split_sentences_keeps_punctuation():
    assert split_sentences("One. Two!  Three? Four") == ["One.", "Two!", "Three?", "Four"]


@pytest.mark.parametrize("limit", [50, 120, 280, 500])
def test_unnumbered_thread_round_trips(limit):
    text = announcement(30)
    chunks = split_into_thread(text, limit)
    assert all(len(c) <= limit for c in chunks)
    assert " ".join(chunks) == text


def test_numbered_thread_respects_limit_including_markers():
    text = announcement(40)
    chunks = split_into_thread(text, 280, numbered=True)
    total = len(chunks)
    assert all(len(c) <= 280 for c in chunks)
    assert [MARKER.search(c).group(0) for c in chunks] == [f" ({i}/{total})" for i in range(1, total + 1)]
    assert " ".join(MARKER.sub("", c) for c in chunks) == text


def test_nine_hundred_characters_make_at_least_four_tweets():
    text = announcement(20)[:900]
    assert len(text) == 900
    chunks = split_into_thread(text, 280, numbered=True)
    assert len(chunks) >= 4
    assert all(len(c) <= 280 for c in chunks)


def test_hard_wrap_breaks_words_only_when_forced():
    word = "x" * 700
    pieces = hard_wrap(word, 280)
    assert [len(p) for p in pieces] == [280, 280, 140]
    assert "".join(pieces) == word


def test_hard_wrap_prefers_word_boundaries():
    sentence = "alpha beta gamma delta epsilon zeta eta theta"
    pieces = hard_wrap(sentence, 12)
    assert all(len(p) <= 12 for p in pieces)
    assert " ".join(pieces) == sentence


def test_pack_sentences_rejects_non_positive_limit():
    with pytest.raises(ValueError):
        pack_sentences("hello", 0)


def test_truncate_leaves_short_text_alone():
    assert truncate("hello", 10) == "hello"


def test_truncate_backs_off_to_whitespace():
    assert truncate("hello world foo", 13) == "hello world"


def test_truncate_cuts_at_boundary_when_next_char_is_space():
    assert truncate("hello world foo", 11) == "hello world"


def test_truncate_hard_cuts_without_nearby_whitespace():
    text = "a " + "b" * 60
    assert truncate(text, 30) == text[:30]
    assert len(truncate(text, 30)) == 30
