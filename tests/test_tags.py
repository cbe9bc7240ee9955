import pytest

from lifecycled.core.tags import parse_tags
from lifecycled.utils.diagnostics import ProvisioningError, TagValidationError


def _tag_string(count):
    return ",".join(f"key{i}=value{i}" for i in range(count))


def test_parse_tags_empty_string_returns_empty_mapping():
    assert parse_tags("") == {}


def test_parse_tags_multiple_pairs():
    assert parse_tags("key1=value1,key2=value2,key3=value3") == {
        "key1": "value1",
        "key2": "value2",
        "key3": "value3",
    }


def test_parse_tags_trims_whitespace():
    assert parse_tags(" key1 = value1 , key2 = value2 ") == {"key1": "value1", "key2": "value2"}


def test_parse_tags_value_keeps_equals_signs():
    assert parse_tags("key1=value=with=equals") == {"key1": "value=with=equals"}


def test_parse_tags_allows_empty_value():
    assert parse_tags("key1=") == {"key1": ""}


@pytest.mark.parametrize("tag_string", ["key1", "=value1", "   =value1"])
def test_parse_tags_ignores_pairs_without_key_or_separator(tag_string):
    assert parse_tags(tag_string) == {}


def test_parse_tags_skips_invalid_pairs_between_valid_ones():
    assert parse_tags("key1=value1,invalid,key2=value2") == {"key1": "value1", "key2": "value2"}


def test_parse_tags_comma_splits_values():
    assert parse_tags("key1=alpha,beta,key2=gamma") == {"key1": "alpha", "key2": "gamma"}


def test_parse_tags_last_duplicate_wins():
    assert parse_tags("key1=value1,key1=value2") == {"key1": "value2"}


def test_parse_tags_unicode_and_spaces():
    assert parse_tags("key1=值,my key=my value") == {"key1": "值", "my key": "my value"}


def test_parse_tags_length_limits_are_inclusive():
    result = parse_tags("a" * 128 + "=" + "b" * 256)
    assert result == {"a" * 128: "b" * 256}


def test_parse_tags_rejects_long_key():
    with pytest.raises(TagValidationError):
        parse_tags("a" * 129 + "=value1")


def test_parse_tags_rejects_long_value():
    with pytest.raises(TagValidationError):
        parse_tags("key1=" + "a" * 257)


def test_parse_tags_fifty_tags_allowed():
    assert len(parse_tags(_tag_string(50))) == 50


def test_parse_tags_rejects_more_than_fifty_tags():
    with pytest.raises(TagValidationError):
        parse_tags(_tag_string(51))


@pytest.mark.parametrize("tag_string", ["aws:something=value1", "AWS:something=value1", "Aws:x=y"])
def test_parse_tags_rejects_reserved_prefix(tag_string):
    with pytest.raises(TagValidationError):
        parse_tags(tag_string)


def test_parse_tags_allows_aws_inside_key():
    assert parse_tags("myaws:key=value1") == {"myaws:key": "value1"}


def test_tag_validation_error_is_a_provisioning_error():
    with pytest.raises(ProvisioningError):
        parse_tags("aws:x=y")
