from parley.analysis import (
    extract_features,
    extract_keywords,
    looks_like_question,
    sentiment_score,
    word_count,
)


def test_question_features():
    tags = extract_features("How are you?")
    assert tags == ["short_messages", "asks_questions", "how_questions"]


def test_tone_structure_and_intent_features():
    text = "Could you please EXPLAIN this!\nI think it matters"
    tags = extract_features(text)
    for tag in (
        "short_messages",
        "expressive",
        "polite",
        "opinionated",
        "multi_line",
        "uses_capitals",
        "requests",
        "seeking_info",
    ):
        assert tag in tags
    assert "asks_questions" not in tags


def test_length_buckets():
    assert extract_features(" ".join(["word"] * 12))[0] == "medium_messages"
    assert extract_features(" ".join(["word"] * 30))[0] == "long_messages"


def test_word_count_and_keywords():
    assert word_count("  one two   three ") == 3
    assert word_count("x") == 1
    assert extract_keywords("The deployment pipeline failed during the nightly build run") == [
        "deployment",
        "pipeline",
        "failed",
        "during",
        "nightly",
    ]


def test_sentiment_is_clamped_and_signed():
    assert sentiment_score("This is great and amazing") > 0
    assert sentiment_score("terrible error, awful problem") < 0
    assert sentiment_score("neutral words only") == 0.0
    assert -1.0 <= sentiment_score("bad " * 50) <= 1.0


def test_looks_like_question():
    assert looks_like_question("Is it ready?")
    assert not looks_like_question("It is ready.")
