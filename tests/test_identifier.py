"""Tests for identifiers and resource identifiers."""

import pytest

from phaseflow.schemas import Category, Identifier, ResourceIdentifier


# =============================================================================
# Identifier
# =============================================================================


class TestIdentifierParse:
    """Tests for Identifier.parse."""

    def test_name_only(self):
        ident = Identifier.parse("orders")
        assert ident == Identifier("orders")
        assert ident.project is None
        assert ident.output is None

    def test_project_and_name(self):
        assert Identifier.parse("sales/orders") == Identifier("orders", project="sales")

    def test_namespace_project_and_name(self):
        ident = Identifier.parse("acme/sales/orders")
        assert ident.namespace == "acme"
        assert ident.project == "sales"
        assert ident.name == "orders"

    def test_output_selector(self):
        ident = Identifier.parse("sales/split:rejected")
        assert ident.name == "split"
        assert ident.output == "rejected"
        assert ident.output_or_default == "rejected"

    def test_default_output(self):
        assert Identifier.parse("split").output_or_default == "main"

    def test_passes_identifier_through(self):
        ident = Identifier("orders")
        assert Identifier.parse(ident) is ident

    @pytest.mark.parametrize("text", ["", "  ", "a//b", "a/b/c/d", "a:", "/a"])
    def test_invalid(self, text):
        with pytest.raises(ValueError):
            Identifier.parse(text)

    def test_empty_name_rejected(self):
        with pytest.raises(ValueError, match="must not be empty"):
            Identifier("")

    def test_separator_in_part_rejected(self):
        with pytest.raises(ValueError):
            Identifier("a/b")


class TestIdentifierFormat:
    """Tests for string form and defaulting."""

    def test_str_round_trip(self):
        for text in ["orders", "sales/orders", "acme/sales/orders", "acme/sales/split:main"]:
            assert str(Identifier.parse(text)) == text

    def test_namespace_without_project_not_rendered(self):
        assert str(Identifier("orders", namespace="acme")) == "orders"

    def test_with_defaults_fills_missing(self):
        ident = Identifier("orders").with_defaults("sales", "acme")
        assert ident == Identifier("orders", project="sales", namespace="acme")

    def test_with_defaults_keeps_explicit(self):
        ident = Identifier("orders", project="other").with_defaults("sales")
        assert ident.project == "other"

    def test_equals_in_scope(self):
        a = Identifier("orders")
        b = Identifier("orders", project="sales")
        assert a != b
        assert a.equals_in(b, "sales")
        assert not a.equals_in(b, "other")

    def test_without_output(self):
        ident = Identifier.parse("split:rejected")
        assert ident.without_output() == Identifier("split")
        assert ident.with_output("main").output == "main"

    def test_hashable(self):
        assert len({Identifier("a"), Identifier("a"), Identifier("b")}) == 2

    def test_dict_round_trip(self):
        ident = Identifier("split", project="sales", namespace="acme", output="x")
        assert Identifier.from_dict(ident.to_dict()) == ident


class TestCategory:
    def test_from_string(self):
        assert Category.from_string("Mapping") == Category.MAPPING

    def test_unknown(self):
        with pytest.raises(ValueError, match="Unknown category"):
            Category.from_string("widget")


# =============================================================================
# ResourceIdentifier
# =============================================================================


class TestResourceIdentifier:
    """Tests for resource containment used to order targets."""

    def test_partition_order_normalized(self):
        a = ResourceIdentifier("table", "t", (("b", 1), ("a", 2)))
        b = ResourceIdentifier("table", "t", (("a", "2"), ("b", "1")))
        assert a == b

    def test_whole_contains_partition(self):
        whole = ResourceIdentifier.of_table("orders", "shop")
        part = ResourceIdentifier.of_table("orders", "shop", {"day": "2024-01-01"})
        assert whole.contains(part)
        assert not part.contains(whole)
        assert part.intersects(whole)

    def test_different_partitions_do_not_intersect(self):
        a = ResourceIdentifier.of_table("orders", partition={"day": "1"})
        b = ResourceIdentifier.of_table("orders", partition={"day": "2"})
        assert not a.intersects(b)

    def test_category_must_match(self):
        assert not ResourceIdentifier.of_table("x").contains(ResourceIdentifier.of_file("x"))

    def test_glob_name(self):
        pattern = ResourceIdentifier("table", "shop.*")
        assert pattern.contains(ResourceIdentifier.of_table("orders", "shop"))
        assert not pattern.contains(ResourceIdentifier.of_table("orders", "other"))

    def test_file_trailing_slash(self):
        assert ResourceIdentifier.of_file("/data/x/") == ResourceIdentifier.of_file("/data/x")

    def test_str(self):
        res = ResourceIdentifier.of_table("orders", "shop", {"day": "1"})
        assert str(res) == "table:shop.orders[day=1]"

    def test_dict_round_trip(self):
        res = ResourceIdentifier.of_file("/data/x", {"day": "1"})
        assert ResourceIdentifier.from_dict(res.to_dict()) == res
