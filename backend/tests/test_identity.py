"""Tests for identity resolution, field coalescing and identity grouping."""

import uuid
from types import SimpleNamespace

from conftest import feed_row
from storefront.schemas.catalog_import import FeedProduct
from storefront.services.identity import (
    IdentityIndex, ProductKeys, base_slug_for, coalesce, group_by_identity, merge_fields,
)


def stored(sku=None, external_id=None, slug="stored"):
    return SimpleNamespace(id=uuid.uuid4(), sku=sku, external_id=external_id, slug=slug)


def parse(**fields):
    return FeedProduct.model_validate(feed_row(**fields))


class TestCoalesce:
    def test_missing_values_fall_back(self):
        assert coalesce(None, "old") == "old"
        assert coalesce("", "old") == "old"
        assert coalesce("   ", "old") == "old"

    def test_falsy_values_are_real(self):
        assert coalesce(0, 5) == 0
        assert coalesce(False, True) is False
        assert coalesce([], ["a"]) == []

    def test_merge_fields_overwrites_required_and_keeps_omitted(self):
        product = SimpleNamespace(
            name="Old", description="old", price=1.0, compare_price=2.0, sku="S1",
            external_id="E1", stock=4, brand="Acme", source="deodap", tags=["a"],
            images=[], video_url=None, weight=None, dimensions=None, specifications=None,
            meta_title=None, meta_description=None, is_digital=False,
            track_inventory=True, is_featured=False, is_active=True,
        )
        fields = merge_fields(parse(name="New", price=12, sku="S1", stock=0), product)

        assert fields["name"] == "New"
        assert fields["price"] == 12
        assert fields["stock"] == 0
        assert fields["brand"] == "Acme"
        assert fields["external_id"] == "E1"
        assert fields["tags"] == ["a"]


class TestExternalId:
    def test_zero_is_a_valid_id(self):
        assert parse(externalId=0).external_id == "0"

    def test_numeric_ids_become_strings(self):
        assert parse(externalId=12345).external_id == "12345"
        assert parse(externalId=12345.0).external_id == "12345"

    def test_blank_is_absent(self):
        assert parse(externalId="  ").external_id is None
        assert parse().external_id is None


class TestIdentityIndex:
    def test_sku_wins_over_slug_and_external_id(self):
        by_sku = stored(sku="S1", external_id="E1", slug="alpha")
        by_slug = stored(slug="beta")
        by_external = stored(external_id="E2", slug="gamma")
        index = IdentityIndex([by_sku, by_slug, by_external])

        row = parse(name="Beta", sku="S1", externalId="E2")
        assert index.resolve(row, base_slug_for(row)).id == by_sku.id

    def test_external_id_when_sku_unknown(self):
        product = stored(external_id="E1", slug="alpha")
        index = IdentityIndex([product])

        row = parse(name="Something Else", externalId="E1")
        assert index.resolve(row, base_slug_for(row)).id == product.id

    def test_slug_is_last_resort(self):
        product = stored(slug="yoga-mat")
        index = IdentityIndex([product])

        row = parse(name="Yoga Mat")
        assert index.resolve(row, base_slug_for(row)).id == product.id

    def test_slug_match_stands_when_the_row_has_a_new_sku(self):
        product = stored(sku="S1", slug="yoga-mat")
        index = IdentityIndex([product])

        row = parse(name="Yoga Mat", sku="S2")
        assert index.resolve(row, base_slug_for(row)).id == product.id

    def test_external_id_match_stands_when_the_row_has_a_new_sku(self):
        product = stored(sku="S1", external_id="E1")
        index = IdentityIndex([product])

        row = parse(externalId="E1", sku="S2")
        assert index.resolve(row, base_slug_for(row)).id == product.id

    def test_registered_products_match_by_sku_not_slug(self):
        index = IdentityIndex()
        created = ProductKeys(id=uuid.uuid4(), sku="S1", external_id=None, slug="red-shirt")
        index.register(created)

        assert index.resolve(parse(name="Red Shirt", sku="S1"), "red-shirt") == created
        assert index.resolve(parse(name="Red Shirt"), "red-shirt") is None


class TestGroupByIdentity:
    def test_rows_sharing_any_key_share_a_group(self):
        rows = list(enumerate([
            parse(name="Red Shirt"),
            parse(name="Mat", sku="M1"),
            parse(name="Red Shirt", sku="R1"),
            parse(name="Yoga Mat", sku="M1"),
            parse(name="Band"),
        ]))
        groups = group_by_identity(rows)

        as_indexes = sorted([index for index, _ in group] for group in groups)
        assert as_indexes == [[0, 2], [1, 3], [4]]

    def test_groups_keep_row_order(self):
        rows = list(enumerate([parse(price=price, sku="S1") for price in (1, 2, 3)]))
        (group,) = group_by_identity(rows)
        assert [row.price for _, row in group] == [1, 2, 3]
