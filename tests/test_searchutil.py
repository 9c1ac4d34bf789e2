import pytest

from connectors.searchutil import (
    any_candidate_matches,
    build_related_titles,
    exclude_titles,
    extract_related_titles,
    filter_english_alphabet_names,
    is_english_alphabet_name,
    matches_query,
    normalize,
    significant_tokens,
    split_related_title_block,
    tokenize_normalized,
)


def test_normalize_replaces_punctuation_and_collapses_whitespace():
    assert normalize("  One-Punch   Man!  ") == "one punch man"
    assert normalize("Solo Leveling: Ragnarok") == "solo leveling ragnarok"
    assert normalize("") == ""


def test_tokenize_dedupes_in_order():
    assert tokenize_normalized("really really love you really") == ["really", "love", "you"]


def test_significant_tokens_drop_stop_words():
    assert significant_tokens(["my", "awkward", "senpai", "the"]) == ["awkward", "senpai"]


def test_matches_query_by_substring_or_all_tokens():
    query = normalize("leveling solo")
    tokens = tokenize_normalized(query)
    assert matches_query("Solo Leveling", query, tokens)
    assert matches_query("The Solo Leveling Ragnarok", normalize("solo leveling"), [])
    assert not matches_query("Solo Camping", query, tokens)
    assert not matches_query("", query, tokens)


def test_any_candidate_matches():
    query = normalize("nano")
    assert any_candidate_matches(["Another Title", "Nano Machine"], query, tokenize_normalized(query))
    assert not any_candidate_matches(["Another Title"], query, tokenize_normalized(query))


def test_english_alphabet_filter():
    assert is_english_alphabet_name("Solo Leveling: Ragnarok")
    assert is_english_alphabet_name("100 Kanojo")
    assert not is_english_alphabet_name("俺だけレベルアップな件")
    assert not is_english_alphabet_name("1234")
    assert filter_english_alphabet_names(["Solo Leveling", "solo leveling", "나 혼자만 레벨업"]) == ["Solo Leveling"]


def test_exclude_titles_compares_normalized_forms():
    values = ["The 100 Girlfriends", "100 Kanojo", "the 100 girlfriends!"]
    assert exclude_titles(values, "The 100 Girlfriends") == ["100 Kanojo"]


def test_split_related_title_block():
    assert split_related_title_block("A; B | C, D") == ["A", "B", "C", "D"]
    assert split_related_title_block("  ") == []


def test_extract_related_titles_from_labelled_text():
    body = "<div>Alternative Names: Mechanical Cultivator | Nano Machine Reloaded</div>"
    assert extract_related_titles(body) == ["Mechanical Cultivator", "Nano Machine Reloaded"]


def test_extract_related_titles_from_label_on_previous_line():
    body = "<div>Associated Names</div><div>Ore dake Level Up na Ken; 나 혼자만 레벨업</div>"
    assert extract_related_titles(body) == ["Ore dake Level Up na Ken"]


def test_extract_related_titles_from_embedded_json():
    body = '<script>{"altTitles": ["Solo Leveling", "Only I Level Up"], "synonyms": "Na Honjaman"}</script>'
    titles = extract_related_titles(body)
    assert "Solo Leveling" in titles
    assert "Only I Level Up" in titles
    assert "Na Honjaman" in titles


def test_build_related_titles_excludes_primary():
    titles = build_related_titles("Nano Machine", ["Nano Machine", "Mechanical Cultivator", "나노마신"])
    assert titles == ["Mechanical Cultivator"]


@pytest.mark.parametrize("value", [
    "  One-Punch   Man!  ",
    "Solo Leveling: Ragnarok",
    "[Oshi no Ko]",
    "The 100 Girlfriends Who Really, Really, Really, Really, Really Love You",
    "나 혼자만 레벨업",
    "",
])
def test_normalize_is_idempotent(value):
    once = normalize(value)
    assert normalize(once) == once


@pytest.mark.parametrize("body", [
    "Demonic Emperor; The Devil Butler; Mo Huang Da Guan Jia",
    "<div>Alternative Names: Demonic Emperor; The Devil Butler; Mo Huang Da Guan Jia</div>",
    '<script>{"altTitles": "Demonic Emperor; The Devil Butler; Mo Huang Da Guan Jia"}</script>',
])
def test_related_titles_drop_primary_and_keep_order(body):
    candidates = extract_related_titles(body) or split_related_title_block(body)
    related = build_related_titles("The Devil Butler", candidates + ["demonic emperor"])
    assert related == ["Demonic Emperor", "Mo Huang Da Guan Jia"]


@pytest.mark.parametrize("value", [
    "Поднятие уровня в одиночку",
    "Solo Левелинг",
    "Ragnarök",
    "俺だけレベルアップな件",
    "나 혼자만 레벨업",
])
def test_english_alphabet_filter_drops_other_scripts(value):
    assert not is_english_alphabet_name(value)
    assert filter_english_alphabet_names([value, "Solo Leveling"]) == ["Solo Leveling"]
