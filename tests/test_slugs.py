"""Tests for public link slugs."""
import pytest

from quoteledger.utils.slugs import generate_public_slug, is_valid_public_slug


def test_generated_slug_is_24_url_safe_characters():
    slug = generate_public_slug()
    assert len(slug) == 24
    assert is_valid_public_slug(slug)


def test_generated_slugs_differ():
    assert len({generate_public_slug() for _ in range(100)}) == 100


@pytest.mark.parametrize("slug", ["", "abc", "a" * 19, "a" * 23 + "/", "a" * 23 + "=", "a" * 23 + " "])
def test_rejects_short_or_unsafe_slugs(slug):
    assert not is_valid_public_slug(slug)


def test_accepts_dash_and_underscore():
    assert is_valid_public_slug("Ab-_" * 5)
