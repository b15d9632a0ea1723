"""
Tests for the reconciler.

These tests cover:
- Creating the collection and its indexes
- Validation failures
- Partial progress on transient failures
- Status reporting
"""

import pytest
from unittest.mock import AsyncMock, patch

from mongo_collections.config import Settings
from mongo_collections.core.exceptions import PermanentDatabaseError, TransientDatabaseError
from mongo_collections.database import connections
from mongo_collections.database.client import CollectionClient
from mongo_collections.models.outcome import OutcomeKind
from mongo_collections.services.reconciler import Reconciler


class TestReconcile:
    """Happy paths of a reconcile pass."""

    @pytest.mark.asyncio
    async def test_new_collection_with_indexes(self, fake_client, make_declaration, raw_index):
        """A missing collection is created along with its indexes."""
        declaration = make_declaration(
            indexes=[raw_index(("f1", 1), ("f2", -1), name="idx1"), raw_index(("ref", 1), unique=True)]
        )

        outcome = await Reconciler(fake_client).reconcile(declaration)

        assert outcome.kind == OutcomeKind.SUCCESS
        assert outcome.collection_created is True
        assert outcome.created == ["idx1", "ref_1"]
        assert outcome.operations_applied == 2
        assert fake_client.index_names("orders") == ["_id_", "idx1", "ref_1"]

    @pytest.mark.asyncio
    async def test_second_pass_changes_nothing(self, fake_client, make_declaration, raw_index):
        """Reconciling an in-sync collection applies no operations."""
        declaration = make_declaration(
            collation={"locale": "en", "strength": 2},
            indexes=[
                raw_index(("name", 1)),
                raw_index(("title", "text"), name="search", collation={"locale": "simple"}),
            ],
        )
        reconciler = Reconciler(fake_client)
        await reconciler.reconcile(declaration)
        fake_client.calls.clear()

        outcome = await reconciler.reconcile(declaration)

        assert outcome.is_success
        assert outcome.operations_applied == 0
        assert fake_client.calls == [("ensure", "orders")]

    @pytest.mark.asyncio
    async def test_clustered_on_existing_collection_is_ignored(self, fake_client, make_declaration):
        """Creation options don't apply to an existing collection."""
        fake_client.add_collection("orders")

        outcome = await Reconciler(fake_client).reconcile(make_declaration(clustered=True))

        assert outcome.is_success
        assert outcome.collection_created is False
        assert "options" not in fake_client.collections["orders"]

    @pytest.mark.asyncio
    async def test_undeclared_indexes_are_dropped_first(self, fake_client, make_declaration, raw_index):
        """Drops happen before creates; the _id_ index stays."""
        fake_client.add_collection("orders")
        fake_client.add_index("orders", "old", [("legacy", 1)])

        outcome = await Reconciler(fake_client).reconcile(
            make_declaration(indexes=[raw_index(("new", 1))])
        )

        assert outcome.dropped == ["old"]
        assert outcome.created == ["new_1"]
        assert [c[0] for c in fake_client.calls] == ["ensure", "drop", "create"]
        assert fake_client.index_names("orders") == ["_id_", "new_1"]

    @pytest.mark.asyncio
    async def test_collection_name_from_spec(self, fake_client, make_declaration):
        await Reconciler(fake_client).reconcile(make_declaration("orders", spec={"name": "orders_v2"}))

        assert "orders_v2" in fake_client.collections


class TestValidation:
    """Declarations rejected before touching the database."""

    @pytest.mark.asyncio
    async def test_unknown_option_is_permanent(self, fake_client, make_declaration, raw_index):
        outcome = await Reconciler(fake_client).reconcile(
            make_declaration(indexes=[raw_index(("a", 1), clustered=True)])
        )

        assert outcome.kind == OutcomeKind.PERMANENT_FAILURE
        assert fake_client.calls == []

    @pytest.mark.asyncio
    async def test_direction_and_type_is_permanent(self, fake_client, make_declaration):
        declaration = make_declaration(
            indexes=[{"keys": [{"field": "a", "direction": 1, "indexType": "text"}]}]
        )

        outcome = await Reconciler(fake_client).reconcile(declaration)

        assert outcome.is_permanent
        assert "direction and indexType" in outcome.reason

    @pytest.mark.asyncio
    async def test_duplicate_names_are_permanent(self, fake_client, make_declaration, raw_index):
        declaration = make_declaration(
            indexes=[raw_index(("a", 1), name="dup"), raw_index(("b", 1), name="dup")]
        )

        outcome = await Reconciler(fake_client).reconcile(declaration)

        assert outcome.is_permanent
        assert "dup" in outcome.reason

    @pytest.mark.asyncio
    async def test_same_keys_twice_are_permanent(self, fake_client, make_declaration, raw_index):
        declaration = make_declaration(
            indexes=[raw_index(("a", 1), name="one"), raw_index(("a", 1), name="two", unique=True)]
        )

        outcome = await Reconciler(fake_client).reconcile(declaration)

        assert outcome.is_permanent
        assert "same keys" in outcome.reason

    @pytest.mark.asyncio
    async def test_partial_indexes_with_different_filters(self, fake_client, make_declaration, raw_index):
        """The same keys under different partial filters are separate indexes."""
        declaration = make_declaration(
            indexes=[
                raw_index(("a", 1), name="active", partialFilterExpression={"state": "active"}),
                raw_index(("a", 1), name="closed", partialFilterExpression={"state": "closed"}),
            ]
        )

        outcome = await Reconciler(fake_client).reconcile(declaration)

        assert outcome.is_success
        assert outcome.created == ["active", "closed"]
        assert fake_client.index_names("orders") == ["_id_", "active", "closed"]

    @pytest.mark.asyncio
    async def test_same_partial_filter_twice_is_permanent(self, fake_client, make_declaration, raw_index):
        declaration = make_declaration(
            indexes=[
                raw_index(("a", 1), name="one", partialFilterExpression={"state": "active"}),
                raw_index(("a", 1), name="two", partialFilterExpression={"state": "active"}),
            ]
        )

        outcome = await Reconciler(fake_client).reconcile(declaration)

        assert outcome.is_permanent
        assert fake_client.collections == {}

    @pytest.mark.asyncio
    async def test_id_index_declaration_is_permanent(self, fake_client, make_declaration, raw_index):
        outcome = await Reconciler(fake_client).reconcile(
            make_declaration(indexes=[raw_index(("_id", 1))])
        )

        assert outcome.is_permanent


class TestFailures:
    """Database failures during a pass."""

    @pytest.mark.asyncio
    async def test_transient_failure_during_drops_keeps_progress(self, fake_client, make_declaration):
        """After one of two drops the next pass only has the other one left."""
        fake_client.add_collection("orders")
        fake_client.add_index("orders", "a_1", [("a", 1)])
        fake_client.add_index("orders", "b_1", [("b", 1)])
        reconciler = Reconciler(fake_client)

        original_drop = fake_client.drop_index
        calls = {"n": 0}

        async def flaky_drop(collection, name):
            calls["n"] += 1
            if calls["n"] == 2:
                raise TransientDatabaseError(f"drop index {name} of {collection}", "connection reset")
            await original_drop(collection, name)

        fake_client.drop_index = flaky_drop

        outcome = await reconciler.reconcile(make_declaration(indexes=[]))

        assert outcome.kind == OutcomeKind.TRANSIENT_FAILURE
        assert outcome.dropped == ["a_1"]
        assert outcome.operations_applied == 1
        assert fake_client.index_names("orders") == ["_id_", "b_1"]

        outcome = await reconciler.reconcile(make_declaration(indexes=[]))

        assert outcome.is_success
        assert outcome.dropped == ["b_1"]

    @pytest.mark.asyncio
    async def test_failed_create_stops_the_pass(self, fake_client, make_declaration, raw_index):
        """Nothing after a failed step is applied."""
        fake_client.fail("create_index", PermanentDatabaseError("create index on orders", "bad options"))

        outcome = await Reconciler(fake_client).reconcile(
            make_declaration(indexes=[raw_index(("a", 1)), raw_index(("b", 1))])
        )

        assert outcome.is_permanent
        assert outcome.collection_created is True
        assert outcome.created == []
        assert fake_client.index_names("orders") == ["_id_"]

    @pytest.mark.asyncio
    async def test_transient_failure_creating_collection(self, fake_client, make_declaration):
        fake_client.fail(
            "ensure_database_and_collection",
            TransientDatabaseError("create collection orders", "no primary"),
        )

        outcome = await Reconciler(fake_client).reconcile(make_declaration())

        assert outcome.is_transient
        assert outcome.reason == "create collection orders failed: no primary"

    @pytest.mark.asyncio
    async def test_missing_secret_files_are_transient(self, make_declaration, tmp_path):
        """Unreadable credentials are retried and still reported."""
        settings = Settings(
            mongo_username_file=str(tmp_path / "username"),
            mongo_password_file=str(tmp_path / "password"),
        )
        writer = AsyncMock()
        connections._mongo_client = None
        connections._credential_provider = None
        try:
            with patch("mongo_collections.database.connections.get_settings", return_value=settings):
                outcome = await Reconciler(CollectionClient("app"), writer).reconcile(make_declaration())
        finally:
            connections._mongo_client = None
            connections._credential_provider = None

        assert outcome.is_transient
        assert "could not load credentials" in outcome.reason
        writer.write.assert_awaited_once()


class TestStatusReporting:
    """Every pass hands one report to the status writer."""

    @pytest.mark.asyncio
    async def test_report_per_pass(self, fake_client, make_declaration):
        writer = AsyncMock()
        declaration = make_declaration(generation=7)

        outcome = await Reconciler(fake_client, writer).reconcile(declaration)

        writer.write.assert_awaited_once()
        report = writer.write.await_args.args[0]
        assert report.namespace == "default"
        assert report.name == "orders"
        assert report.generation == 7
        assert report.outcome == outcome
        assert report.message == outcome.message()

    @pytest.mark.asyncio
    async def test_writer_failure_does_not_change_outcome(self, fake_client, make_declaration):
        writer = AsyncMock()
        writer.write.side_effect = RuntimeError("api server down")

        outcome = await Reconciler(fake_client, writer).reconcile(make_declaration())

        assert outcome.is_success
