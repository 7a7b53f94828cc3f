from chordfinder.normalize import (
    base_filename,
    basic_clean,
    canonical_key,
    key_matches,
    normalize_korean,
    normalize_title_for_dedup,
    similarity,
    split_keys,
)
from chordfinder.config import MAX_INPUT_CHARS


def test_basic_clean_collapses_whitespace_and_quotes():
    raw = "   Holy   Forever ’s\n"
    assert basic_clean(raw) == "Holy Forever 's"


def test_basic_clean_truncates_long_input():
    assert len(basic_clean("a" * (MAX_INPUT_CHARS + 50))) == MAX_INPUT_CHARS


def test_normalize_korean_ignores_spacing_and_case():
    assert normalize_korean("위대하신 주") == normalize_korean("위대하신주")
    assert normalize_korean(" Holy  Forever ") == "holyforever"
    assert normalize_korean(None) == ""


def test_similarity_case_and_format_invariant():
    assert similarity("Holy Forever", "holy forever") == 1.0
    assert similarity("Holy Forever", "HolyForever") == 1.0


def test_similarity_identity_and_disjoint():
    for s in ["abc", "위대하신 주", "x"]:
        assert similarity(s, s) == 1.0
    assert similarity("abc", "xyz") == 0.0
    assert similarity("", "abc") == 0.0


def test_similarity_containment_and_symmetry():
    assert similarity("holy", "holy forever") == 0.9
    assert similarity("holy forever", "holy") == 0.9
    a, b = "holy forevr", "holy forever"
    assert similarity(a, b) == similarity(b, a)
    assert 0.6 < similarity(a, b) < 1.0


def test_base_filename_strips_extension_and_page_markers():
    assert base_filename("Holy_Forever_1.jpg") == "holy_forever"
    assert base_filename("Holy Forever (2).jpg") == "holy forever"
    assert base_filename("TalkMedia_i_54d97c7950f2 2.jpeg.jpeg") == "talkmedia_i_54d97c7950f2"
    assert base_filename("grace_page2.png") == "grace"
    assert base_filename("grace page 3.png") == "grace"
    assert base_filename("Song_001.jpg") == "song"


def test_base_filename_keeps_glued_numbers():
    # a number glued to the stem is part of the name
    assert base_filename("song2.jpg") == "song2"
    assert base_filename("worship2.png") == "worship2"
    assert base_filename(None) == ""


def test_normalize_title_for_dedup_drops_keys_brackets_and_numbers():
    assert normalize_title_for_dedup("거룩하신 어린양 E") == "거룩하신 어린양"
    assert normalize_title_for_dedup("Holy Forever (Live) 2") == "holy forever"
    assert normalize_title_for_dedup("Holy Forever - 3") == "holy forever"
    assert normalize_title_for_dedup("holy holy forever") == "holy forever"


def test_normalize_title_for_dedup_keeps_words_starting_with_key_letters():
    # "a", "e" only count as keys when they stand alone
    assert normalize_title_for_dedup("Amazing Grace") == "amazing grace"
    assert normalize_title_for_dedup("Everlasting God") == "everlasting god"


def test_canonical_key():
    assert canonical_key("bb") == "Bb"
    assert canonical_key("f#M") == "F#m"
    assert canonical_key("AM") == "Am"
    assert canonical_key("H") is None
    assert canonical_key("") is None


def test_split_keys():
    assert split_keys("D, B") == ["D", "B"]
    assert split_keys("G,,G, A") == ["G", "A"]
    assert split_keys(None) == []


def test_key_matches_tokens_exactly():
    assert key_matches("D, B", "D")
    assert key_matches("d", "D")
    assert not key_matches("Dm", "D")
    assert not key_matches("D#", "D")
    assert not key_matches("A", "D")
    assert not key_matches(None, "D")


def test_key_matches_slash_chords_on_either_side():
    assert key_matches("B/D#", "B")
    assert key_matches("B/D#", "D#")
    assert not key_matches("B/D#", "D")
