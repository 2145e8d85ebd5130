from vocab_automation.orchestrator.library.models import VocabularyPair
from vocab_automation.orchestrator.library.parser import parse_vocabulary_csv


def test_parses_lines_in_order() -> None:
    pairs = parse_vocabulary_csv("Haus,house\nBaum,tree")
    assert pairs == [VocabularyPair("Haus", "house"), VocabularyPair("Baum", "tree")]


def test_blank_and_short_lines_are_skipped() -> None:
    raw = "\n  Hund , dog  \n\nKatze\n   \nVogel,bird\n"
    assert parse_vocabulary_csv(raw) == [VocabularyPair("Hund", "dog"), VocabularyPair("Vogel", "bird")]


def test_extra_fields_are_ignored() -> None:
    assert parse_vocabulary_csv("laufen,to run,verb,irregular") == [VocabularyPair("laufen", "to run")]


def test_lines_with_empty_word_are_dropped() -> None:
    assert parse_vocabulary_csv(",house\nBaum,\nTisch,table") == [VocabularyPair("Tisch", "table")]


def test_windows_line_endings() -> None:
    assert parse_vocabulary_csv("Haus,house\r\nBaum,tree\r\n") == [
        VocabularyPair("Haus", "house"),
        VocabularyPair("Baum", "tree"),
    ]


def test_empty_input_gives_empty_list() -> None:
    assert parse_vocabulary_csv("") == []
    assert parse_vocabulary_csv("nur text ohne komma") == []


def test_unicode_is_preserved() -> None:
    assert parse_vocabulary_csv("Mädchen,girl\nStraße,street") == [
        VocabularyPair("Mädchen", "girl"),
        VocabularyPair("Straße", "street"),
    ]


def test_reparsing_normalized_output_is_stable() -> None:
    pairs = parse_vocabulary_csv("a,b\n\nc,d,e\n  f , g \nbroken\n")
    assert pairs == [VocabularyPair("a", "b"), VocabularyPair("c", "d"), VocabularyPair("f", "g")]
    normalized = "\n".join(f"{p.source},{p.target}" for p in pairs)
    assert parse_vocabulary_csv(normalized) == pairs
