import pytest

from flooring_telegram_bot.slugs import COLLECTION_SLUGS, CollectionResolver


def test_resolve_known_collection_case_insensitive() -> None:
    resolver = CollectionResolver()
    assert resolver.resolve("0xBD3531DA5CF5857E7CFAA92426877B022E612CF8") == "pudgypenguins"


def test_resolve_unknown_collection_is_absent() -> None:
    assert CollectionResolver().resolve("0x" + "0" * 40) is None


def test_extra_slugs_are_merged_without_touching_builtin_table() -> None:
    resolver = CollectionResolver({"0xABC": "custom"})
    assert resolver.resolve("0xabc") == "custom"
    assert "0xabc" not in COLLECTION_SLUGS


def test_table_is_read_only() -> None:
    resolver = CollectionResolver()
    with pytest.raises(TypeError):
        resolver.slugs["0xabc"] = "nope"  # type: ignore[index]
