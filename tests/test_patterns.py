"""Tests for pattern extraction, merging and session correlation."""

from datetime import datetime, timedelta

from conftest import make_message, make_pattern, make_session

from conversation_insights.clusters import cluster_patterns
from conversation_insights.patterns import (
    classify_session,
    count_pattern_keys,
    extract_pattern_key,
    extract_patterns,
    extract_user_types,
    find_related_sessions,
    merge_patterns,
    merge_similar_patterns,
    normalize_message,
    pattern_similarity,
)
from conversation_insights.storage import PatternExtractionConfig
from conversation_insights.vocabulary import Vocabulary

NOW = datetime(2025, 3, 1, 12, 0, 0)


def _messages(contents: list[str], **kwargs):
    return [
        make_message(f"m{i}", f"s{i}", content, NOW + timedelta(seconds=i), **kwargs)
        for i, content in enumerate(contents)
    ]


def _sessions(count: int, **kwargs):
    return [make_session(f"s{i}", NOW, **kwargs) for i in range(count)]


class TestNormalizeMessage:
    """Tests for text normalization."""

    def test_lowercases_and_strips_punctuation(self):
        assert normalize_message("Charger BROKEN!!! Help?") == "charger broken help"

    def test_collapses_whitespace(self):
        assert normalize_message("  slow \t\n charging   now ") == "slow charging now"

    def test_keeps_unicode_words(self):
        """Hangul counts as word characters."""
        assert normalize_message("충전 안돼요, 배터리!") == "충전 안돼요 배터리"

    def test_empty_and_punctuation_only(self):
        assert normalize_message("") == ""
        assert normalize_message("?!...") == ""

    def test_deterministic(self):
        text = "Why is the Station offline?"
        assert normalize_message(text) == normalize_message(text)


class TestExtractPatternKey:
    """Tests for pattern key derivation."""

    def test_removes_stop_words(self):
        assert extract_pattern_key("the screen is on fire") == "screen fire"

    def test_key_terms_move_to_front_stably(self):
        assert extract_pattern_key("my slow charging battery") == "charging battery my slow"

    def test_truncates_to_five_tokens(self):
        key = extract_pattern_key("one two three four five six seven")
        assert key == "one two three four five"

    def test_key_term_in_stop_words_is_kept(self):
        vocabulary = Vocabulary(stop_words=frozenset({"app", "the"}), key_terms=frozenset({"app"}))
        assert extract_pattern_key("the app crashed", vocabulary) == "app crashed"

    def test_empty_input_gives_empty_key(self):
        assert extract_pattern_key("") == ""
        assert extract_pattern_key("the of and") == ""

    def test_custom_vocabulary(self):
        vocabulary = Vocabulary(stop_words=frozenset({"please"}), key_terms=frozenset({"refund"}))
        assert extract_pattern_key("please give refund now", vocabulary) == "refund give now"


class TestPatternSimilarity:
    """Tests for Jaccard similarity."""

    def test_identical_keys(self):
        assert pattern_similarity("station error app", "station error app") == 1.0

    def test_three_of_four_tokens(self):
        assert pattern_similarity("station error app", "station error app payment") == 0.75

    def test_disjoint_keys(self):
        assert pattern_similarity("slow charging", "payment failed") == 0.0

    def test_symmetric(self):
        a, b = "charging slow speed", "charging fast"
        assert pattern_similarity(a, b) == pattern_similarity(b, a)

    def test_bounds(self):
        pairs = [("a b c", "c d"), ("x", "x y z"), ("p q", "q p")]
        for a, b in pairs:
            assert 0.0 <= pattern_similarity(a, b) <= 1.0

    def test_empty_union_is_zero(self):
        assert pattern_similarity("", "") == 0.0


class TestMergePatterns:
    """Tests for merging pattern statistics."""

    def test_frequency_and_identity(self):
        main = make_pattern("p1", "station error app", 8)
        other = make_pattern("p2", "station error app payment", 3)
        merged = merge_patterns(main, [other])
        assert merged.id == "p1"
        assert merged.pattern_key == "station error app"
        assert merged.frequency == 11

    def test_examples_deduplicated_and_capped(self):
        main = make_pattern("p1", "a", 5, examples=["x", "y", "z"])
        other = make_pattern("p2", "a b", 5, examples=["y", "w", "v", "u"])
        merged = merge_patterns(main, [other])
        assert merged.examples == ["x", "y", "z", "w", "v"]

    def test_sets_and_entities_combined(self):
        main = make_pattern(
            "p1",
            "a",
            2,
            related_intents=["payment_issue"],
            user_types=["beginner"],
            common_entities={"card": 2},
        )
        other = make_pattern(
            "p2",
            "a b",
            1,
            related_intents=["payment_issue", "app_issue"],
            user_types=["expert", "beginner"],
            common_entities={"card": 1, "station_id": 1},
        )
        merged = merge_patterns(main, [other])
        assert merged.related_intents == ["payment_issue", "app_issue"]
        assert merged.user_types == ["beginner", "expert"]
        assert merged.common_entities == {"card": 3, "station_id": 1}

    def test_sentiment_weighted_over_scored_members_only(self):
        main = make_pattern("p1", "a", 6, average_sentiment_score=-0.5)
        scored = make_pattern("p2", "a b", 2, average_sentiment_score=0.5)
        unscored = make_pattern("p3", "a c", 10)
        merged = merge_patterns(main, [scored, unscored])
        # (-0.5 * 6 + 0.5 * 2) / 8
        assert merged.average_sentiment_score == -0.25
        assert merged.frequency == 18

    def test_sentiment_undefined_when_no_member_scored(self):
        merged = merge_patterns(make_pattern("p1", "a", 2), [make_pattern("p2", "a b", 2)])
        assert merged.average_sentiment_score is None


class TestMergeSimilarPatterns:
    """Tests for greedy similarity merging."""

    def test_merges_near_duplicates(self):
        patterns = [
            make_pattern("p1", "station error app", 8),
            make_pattern("p2", "station error app payment", 3),
        ]
        merged = merge_similar_patterns(patterns, 0.7)
        assert len(merged) == 1
        assert merged[0].frequency == 11
        assert merged[0].pattern_key == "station error app"

    def test_below_threshold_kept_apart(self):
        patterns = [
            make_pattern("p1", "station error app", 8),
            make_pattern("p2", "station error app payment", 3),
        ]
        merged = merge_similar_patterns(patterns, 0.8)
        assert [p.frequency for p in merged] == [8, 3]

    def test_decisions_follow_original_order(self):
        """A merged pattern is not compared again against later patterns."""
        patterns = [
            make_pattern("p1", "a b", 10),
            make_pattern("p2", "a b c", 6),
            make_pattern("p3", "b c", 4),
        ]
        # p1~p2 = 2/3, p1~p3 = 1/3, p2~p3 = 2/3
        merged = merge_similar_patterns(patterns, 0.6)
        assert [(p.pattern_key, p.frequency) for p in merged] == [("a b", 16), ("b c", 4)]

    def test_result_sorted_by_frequency(self):
        patterns = [
            make_pattern("p1", "x", 5),
            make_pattern("p2", "y", 4),
            make_pattern("p3", "y z", 3),
        ]
        merged = merge_similar_patterns(patterns, 0.5)
        assert [p.pattern_key for p in merged] == ["y", "x"]
        assert merged[0].frequency == 7

    def test_conserves_total_frequency(self):
        patterns = [
            make_pattern("p1", "a b", 9),
            make_pattern("p2", "a b c", 7),
            make_pattern("p3", "d e", 5),
            make_pattern("p4", "d e f", 2),
            make_pattern("p5", "g", 1),
        ]
        merged = merge_similar_patterns(patterns, 0.5)
        assert sum(p.frequency for p in merged) == 24

    def test_empty_input(self):
        assert merge_similar_patterns([], 0.5) == []


class TestFindRelatedSessions:
    """Tests for substring-based session correlation."""

    def test_substring_match(self):
        sessions = _sessions(3)
        messages = _messages(["Slow charging speed", "very slow charging speed today", "payment"])
        related = find_related_sessions("slow charging", messages, sessions)
        assert [s.id for s in related] == ["s0", "s1"]

    def test_reordered_tokens_do_not_match(self):
        sessions = _sessions(1)
        messages = _messages(["slow charging speed"])
        assert find_related_sessions("charging slow speed", messages, sessions) == []

    def test_distinct_sessions(self):
        sessions = _sessions(1)
        messages = [
            make_message("m1", "s0", "app error", NOW),
            make_message("m2", "s0", "app error again", NOW),
        ]
        assert len(find_related_sessions("app error", messages, sessions)) == 1

    def test_empty_key_matches_every_session_with_messages(self):
        sessions = _sessions(3)
        messages = _messages(["anything", "else"])
        assert len(find_related_sessions("", messages, sessions)) == 2


class TestUserTypes:
    """Tests for the user-type classifier."""

    def test_size_buckets(self):
        assert classify_session(make_session("s", NOW, message_count=3, issue_resolved=False)) == [
            "beginner"
        ]
        assert classify_session(make_session("s", NOW, message_count=7, issue_resolved=False)) == [
            "intermediate"
        ]
        assert classify_session(make_session("s", NOW, message_count=8, issue_resolved=False)) == [
            "expert"
        ]

    def test_efficient_and_needs_assistance(self):
        session = make_session(
            "s",
            NOW,
            message_count=2,
            issue_resolved=True,
            resolution_steps=2,
            transferred_to_agent=True,
        )
        assert classify_session(session) == ["beginner", "efficient", "needs_assistance"]

    def test_not_efficient_with_many_steps(self):
        session = make_session("s", NOW, message_count=5, issue_resolved=True, resolution_steps=3)
        assert classify_session(session) == ["intermediate"]

    def test_union_across_sessions(self):
        sessions = [
            make_session("a", NOW, message_count=1, issue_resolved=False),
            make_session("b", NOW, message_count=10, issue_resolved=False, transferred_to_agent=True),
            make_session("c", NOW, message_count=2, issue_resolved=False),
        ]
        assert extract_user_types(sessions) == ["beginner", "expert", "needs_assistance"]


class TestExtractPatterns:
    """Tests for frequency-thresholded extraction."""

    def test_frequency_floor_and_order(self):
        contents = ["payment failed"] * 4 + ["app crashed"] * 2 + ["station offline"] * 5
        patterns = extract_patterns(
            _messages(contents), _sessions(11), PatternExtractionConfig(min_frequency=3)
        )
        assert [(p.pattern_key, p.frequency) for p in patterns] == [
            ("station offline", 5),
            ("payment failed", 4),
        ]

    def test_max_patterns_cap(self):
        contents = ["a1"] * 5 + ["b2"] * 4 + ["c3"] * 3
        patterns = extract_patterns(
            _messages(contents),
            _sessions(12),
            PatternExtractionConfig(min_frequency=1, max_patterns=2),
        )
        assert [p.pattern_key for p in patterns] == ["a1", "b2"]

    def test_only_user_messages(self):
        messages = _messages(["payment failed"] * 3) + _messages(["payment failed"] * 3, sender="bot")
        patterns = extract_patterns(messages, _sessions(3), PatternExtractionConfig(min_frequency=1))
        assert patterns[0].frequency == 3

    def test_examples_are_raw_deduplicated_and_capped(self):
        contents = ["Payment failed!", "payment failed", "Payment failed!"] + [
            f"PAYMENT failed{'.' * i}" for i in range(1, 6)
        ]
        patterns = extract_patterns(
            _messages(contents), _sessions(8), PatternExtractionConfig(min_frequency=1)
        )
        assert len(patterns) == 1
        examples = patterns[0].examples
        assert examples[:3] == ["Payment failed!", "payment failed", "PAYMENT failed."]
        assert len(examples) == 5
        assert len(set(examples)) == 5

    def _tagged_messages(self):
        return [
            make_message(
                "m1",
                "s0",
                "card declined",
                NOW,
                intent="payment_issue",
                entities={"card": "visa"},
                sentiment_score=-0.8,
            ),
            make_message(
                "m2",
                "s1",
                "card declined",
                NOW,
                intent="payment_issue",
                entities={"card": "amex", "amount": 10},
                sentiment_score=-0.2,
            ),
            make_message("m3", "s2", "Card declined", NOW, intent="billing"),
        ]

    def test_intents_entities_and_sentiment(self):
        patterns = extract_patterns(
            self._tagged_messages(), _sessions(3), PatternExtractionConfig(min_frequency=1)
        )
        pattern = patterns[0]
        assert pattern.related_intents == ["payment_issue", "billing"]
        assert pattern.common_entities == {"card": 2, "amount": 1}
        assert pattern.average_sentiment_score == -0.5

    def test_entities_skipped_when_disabled(self):
        messages = _messages(["card declined"] * 2, entities={"card": "visa"})
        config = PatternExtractionConfig(min_frequency=1, include_entities=False)
        assert extract_patterns(messages, _sessions(2), config)[0].common_entities == {}

    def test_intents_skipped_when_disabled(self):
        config = PatternExtractionConfig(min_frequency=1, include_intents=False)
        patterns = extract_patterns(self._tagged_messages(), _sessions(3), config)

        assert patterns[0].related_intents == []
        assert patterns[0].average_sentiment_score == -0.5
        clusters = cluster_patterns(patterns, self._tagged_messages(), _sessions(3))
        assert [c.name for c in clusters] == ["unknown"]

    def test_sentiment_skipped_when_disabled(self):
        config = PatternExtractionConfig(min_frequency=1, include_sentiment=False)
        patterns = extract_patterns(self._tagged_messages(), _sessions(3), config)

        assert patterns[0].average_sentiment_score is None
        assert patterns[0].related_intents == ["payment_issue", "billing"]

    def test_sentiment_undefined_without_scores(self):
        patterns = extract_patterns(
            _messages(["card declined"] * 2), _sessions(2), PatternExtractionConfig(min_frequency=1)
        )
        assert patterns[0].average_sentiment_score is None

    def test_user_types_from_correlated_sessions(self):
        sessions = [
            make_session("s0", NOW, message_count=2, issue_resolved=False),
            make_session("s1", NOW, message_count=9, issue_resolved=False),
            make_session("s2", NOW, message_count=5, issue_resolved=False),
        ]
        messages = _messages(["card declined", "card declined", "hello"])
        patterns = extract_patterns(messages, sessions, PatternExtractionConfig(min_frequency=2))
        assert patterns[0].user_types == ["beginner", "expert"]

    def test_empty_key_forms_its_own_bucket(self):
        patterns = extract_patterns(
            _messages(["!!!", "the", "?"]), _sessions(3), PatternExtractionConfig(min_frequency=1)
        )
        assert [(p.pattern_key, p.frequency) for p in patterns] == [("", 3)]

    def test_no_messages(self):
        assert extract_patterns([], [], PatternExtractionConfig()) == []

    def test_idempotent_keys_and_frequencies(self):
        messages = _messages(["payment failed"] * 4 + ["slow charging"] * 3)
        config = PatternExtractionConfig(min_frequency=1)
        first = extract_patterns(messages, _sessions(7), config)
        second = extract_patterns(messages, _sessions(7), config)
        assert {p.pattern_key: p.frequency for p in first} == {
            p.pattern_key: p.frequency for p in second
        }


class TestCountPatternKeys:
    """Tests for raw key counting used by trend windows."""

    def test_counts_user_messages_only(self):
        messages = _messages(["slow charging"] * 2) + _messages(["slow charging"], sender="bot")
        assert count_pattern_keys(messages) == {"charging slow": 2}
