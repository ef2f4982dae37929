from services.matching.validator import NO_MATCH, edit_distance, normalize_text, validate


def test_normalize_strips_and_uppercases():
    assert normalize_text(" 34-a ") == "34A"
    assert normalize_text("Bus #382w!") == "BUS382W"
    assert normalize_text(None) == ""


def test_exact_match_for_every_whitelist_entry():
    whitelist = ["123", "34A", "382W", "7"]
    for entry in ["123", "34A", "382W"]:
        assert validate(entry, [], whitelist) == entry


def test_short_text_never_matches():
    whitelist = ["7", "12"]
    assert validate("7", [], whitelist) == NO_MATCH
    assert validate("", ["12"], whitelist) == NO_MATCH
    assert validate("-", [], whitelist) == NO_MATCH


def test_fuzzy_distance_two_is_rejected():
    # "l23X" -> "L23X": two edits away from "123"
    assert validate("l23X", [], ["123", "34A"]) == NO_MATCH


def test_individual_word_match():
    result = validate("BUS 382W EXPRESS", ["BUS", "382W", "EXPRESS"], ["382W"])
    assert result == "382W"


def test_first_matching_word_wins():
    assert validate("noise", ["34A", "123"], ["123", "34A"]) == "34A"


def test_whitelist_entry_contained_in_text():
    # "50" is 2/3 of "50X"
    assert validate("50X", [], ["50"]) == "50"
    # "5" would be only 1/4 of the text
    assert validate("5XYZ", [], ["5"]) == NO_MATCH


def test_text_contained_in_whitelist_entry():
    # "382" is 75% of "382W"
    assert validate("382", [], ["382W"]) == "382W"
    # "38" is only 50% of "382W" and two edits away
    assert validate("38", [], ["382W"]) == NO_MATCH


def test_single_substitution_matches():
    assert validate("B4A", [], ["34A"]) == "34A"


def test_fuzzy_tie_prefers_whitelist_order():
    # "12X" is one substitution away from both entries
    assert validate("12X", [], ["12A", "12B"]) == "12A"
    assert validate("12X", [], ["12B", "12A"]) == "12B"


def test_fuzzy_rejects_large_length_difference():
    assert validate("12345", [], ["12"]) == NO_MATCH


def test_edit_distance_properties():
    pairs = [("", "ABC"), ("KITTEN", "SITTING"), ("34A", "B4A"), ("L23X", "123")]
    for a, b in pairs:
        assert edit_distance(a, b) == edit_distance(b, a)
        assert edit_distance(a, a) == 0
    assert edit_distance("KITTEN", "SITTING") == 3
    assert edit_distance("L23X", "123") == 2
