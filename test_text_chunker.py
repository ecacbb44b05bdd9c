#!/usr/bin/env python3
"""Tests for text_chunker.

Run: python3 test_text_chunker.py
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent))

from text_chunker import MAX_UTTERANCE_LENGTH, chunk, split_segments

PASSED = 0
FAILED = 0
ERRORS = []


def case(name):
    """Decorator to name a test for the runner."""
    def decorator(fn):
        fn._test_name = name
        return fn
    return decorator


def run_test(fn):
    global PASSED, FAILED
    name = getattr(fn, '_test_name', fn.__name__)
    try:
        fn()
        PASSED += 1
        print(f"  PASS: {name}")
    except AssertionError as e:
        FAILED += 1
        ERRORS.append((name, str(e)))
        print(f"  FAIL: {name} - {e}")
    except Exception as e:
        FAILED += 1
        ERRORS.append((name, f"{type(e).__name__}: {e}"))
        print(f"  ERROR: {name} - {type(e).__name__}: {e}")


REPLY = (
    "Good morning! It is lovely to hear from you. Shall we begin with the vowel "
    "in 'bath'? In Received Pronunciation it is long and open, rather like 'ah'.\n\n"
    "Try saying: a glass of water, a path through the park, half past eight. "
    "Take your time, and do not worry if it feels unnatural at first."
)


@case("Empty and whitespace-only text yield no chunks")
def test_empty():
    assert chunk("") == []
    assert chunk("   \n\n  ") == []


@case("Short text is a single chunk")
def test_short():
    assert chunk("Good morning.") == ["Good morning."]


@case("Segments split after sentence punctuation and on newlines")
def test_split_segments():
    segments = split_segments("Hello there. How are you?\nFine!  Thanks")
    assert segments == ["Hello there.", "How are you?", "Fine!", "Thanks"], segments


@case("Chunks preserve every word in order")
def test_words_preserved():
    for max_len in (20, 60, MAX_UTTERANCE_LENGTH):
        chunks = chunk(REPLY, max_len)
        assert " ".join(chunks).split() == REPLY.split(), max_len


@case("No chunk is empty or exceeds the limit")
def test_bounds():
    for max_len in (15, 40, 100):
        for c in chunk(REPLY, max_len):
            assert c and c == c.strip()
            assert len(c) <= max_len, (max_len, c)


@case("Consecutive short sentences are packed together")
def test_packing():
    chunks = chunk("One. Two. Three. Four.", max_len=10)
    assert chunks == ["One. Two.", "Three.", "Four."], chunks


@case("Oversized sentence falls back to word packing")
def test_long_sentence():
    sentence = "this sentence has no punctuation at all and just keeps going on"
    chunks = chunk(sentence, max_len=20)
    assert len(chunks) > 1
    assert all(len(c) <= 20 for c in chunks)
    assert " ".join(chunks) == sentence


@case("A single word longer than the limit is emitted whole")
def test_long_word():
    chunks = chunk("Say antidisestablishmentarianism slowly.", max_len=10)
    assert "antidisestablishmentarianism" in chunks
    assert chunks[0] == "Say"


@case("max_len below 1 is rejected")
def test_invalid_max_len():
    try:
        chunk("Hello.", max_len=0)
    except ValueError:
        return
    raise AssertionError("Expected ValueError")


@case("Order, word and length properties hold across varied inputs")
def test_properties_varied():
    texts = [
        REPLY,
        "no punctuation anywhere in this rather long line of text that keeps on going",
        "first line\nsecond line\n\nthird line after a gap\n",
        "\n\n\n",
        "Pneumonoultramicroscopicsilicovolcanoconiosis",
        "Short. A much longer sentence that will not fit in a small chunk at all! Ok?",
        "Tabs\tand  double  spaces. Mixed\n\nbreaks?Yes.",
    ]
    for text in texts:
        for max_len in (1, 5, 20, MAX_UTTERANCE_LENGTH):
            chunks = chunk(text, max_len)
            label = (text[:20], max_len)
            assert " ".join(chunks).split() == text.split(), label
            for c in chunks:
                assert c and c == c.strip(), label
                assert len(c) <= max_len or len(c.split()) == 1, (label, c)


if __name__ == "__main__":
    print("=" * 60)
    print("Text Chunker Tests")
    print("=" * 60)

    tests = [
        obj for name, obj in sorted(globals().items())
        if callable(obj) and hasattr(obj, '_test_name')
    ]

    print(f"\nRunning {len(tests)} tests...\n")

    for fn in tests:
        run_test(fn)

    print(f"\n{'=' * 60}")
    print(f"Results: {PASSED} passed, {FAILED} failed out of {PASSED + FAILED}")

    if ERRORS:
        print("\nFailures:")
        for name, err in ERRORS:
            print(f"  - {name}: {err}")

    print("=" * 60)
    sys.exit(0 if FAILED == 0 else 1)
