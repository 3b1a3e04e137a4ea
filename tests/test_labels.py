import functools
import re

import pytest

from promxy.labels import (
    Label,
    Matcher,
    MatchType,
    compare,
    from_strings,
    is_valid_label_name,
    is_valid_label_value,
    is_valid_metric_name,
    labels_to_string,
)


def test_from_strings_sorts_by_name():
    assert from_strings("foo", "bar", "a", "b") == (Label("a", "b"), Label("foo", "bar"))


def test_from_strings_odd_count_raises():
    with pytest.raises(ValueError):
        from_strings("foo", "bar", "baz")


def test_compare_equal_sets():
    assert compare(from_strings("a", "b"), from_strings("a", "b")) == 0


def test_compare_is_antisymmetric():
    low = from_strings("foo", "bar")
    high = from_strings("foo", "baz")
    assert compare(low, high) < 0
    assert compare(high, low) > 0


def test_compare_prefix_is_smaller():
    short = from_strings("a", "b")
    longer = from_strings("a", "b", "c", "d")
    assert compare(short, longer) < 0
    assert compare(longer, short) > 0


def test_compare_orders_by_name_before_value():
    sets = [from_strings("b", "a"), from_strings("a", "z"), from_strings("a", "c")]
    ordered = sorted(sets, key=functools.cmp_to_key(compare))
    assert ordered == [from_strings("a", "c"), from_strings("a", "z"), from_strings("b", "a")]


def test_labels_to_string():
    assert labels_to_string(from_strings("a", "b", "c", "d")) == '{a="b", c="d"}'


def test_labels_to_string_escapes_quotes():
    assert labels_to_string([Label("a", 'x"y')]) == '{a="x\\"y"}'


@pytest.mark.parametrize(
    "name, valid",
    [("labelName", True), ("_labelName", True), ("@labelName", False), ("123labelName", False), ("", False)],
)
def test_label_name_validity(name, valid):
    assert is_valid_label_name(name) is valid


@pytest.mark.parametrize("name, valid", [("name", True), ("@invalid_name", False), ("a:b", True), ("", False)])
def test_metric_name_validity(name, valid):
    assert is_valid_metric_name(name) is valid


def test_label_value_validity():
    assert is_valid_label_value("labelValue") is True
    assert is_valid_label_value(bytes([0xFF]).decode("utf-8", "surrogateescape")) is False
    assert is_valid_label_value(bytes([0xFF])) is False


def test_equal_matcher():
    m = Matcher(MatchType.EQUAL, "job", "api-server")
    assert m.matches("api-server") is True
    assert m.matches("other") is False


def test_not_equal_matcher():
    m = Matcher(MatchType.NOT_EQUAL, "job", "api-server")
    assert m.matches("api-server") is False
    assert m.matches("other") is True


def test_regexp_matcher_is_anchored():
    m = Matcher(MatchType.REGEXP, "job", "fo+")
    assert m.matches("foo") is True
    assert m.matches("xfoo") is False
    assert m.matches("foox") is False


def test_regexp_alternation_is_anchored():
    m = Matcher(MatchType.REGEXP, "job", "a|ab")
    assert m.matches("ab") is True


def test_not_regexp_matcher():
    m = Matcher(MatchType.NOT_REGEXP, "job", "fo+")
    assert m.matches("foo") is False
    assert m.matches("bar") is True


def test_matcher_equality_and_hash():
    a = Matcher(MatchType.REGEXP, "job", "api.*")
    b = Matcher(MatchType.REGEXP, "job", "api.*")
    assert a == b
    assert len({a, b}) == 1


def test_matcher_str():
    assert str(Matcher(MatchType.REGEXP, "job", "api.*")) == 'job=~"api.*"'


def test_invalid_regexp_raises():
    with pytest.raises(re.error):
        Matcher(MatchType.REGEXP, "job", "(")