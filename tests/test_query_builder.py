import unittest
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import create_engine
from sqlalchemy.orm import Session

from crudforge.core.errors import InvalidFieldError, InvalidParameterError
from crudforge.resources.policy import ResourcePolicy
from crudforge.schemas.params import RequestParams
from crudforge.services.query_builder import Ordering, TrashedScope, build_query
from tests.catalog_models import CatalogBase, Category, Product


def _params(**data) -> RequestParams:
    return RequestParams(data)


class QueryBuilderTests(unittest.TestCase):
    @classmethod
    def setUpClass(cls):
        cls.engine = create_engine("sqlite+pysqlite:///:memory:")
        CatalogBase.metadata.create_all(cls.engine)
        with Session(cls.engine) as session:
            hardware = Category(id=1, name="Hardware")
            books = Category(id=2, name="Books")
            session.add_all([hardware, books])
            session.add_all(
                [
                    Product(id=1, name="Hammer", price=Decimal("12.50"), status="active", sort_order=3, category=hardware),
                    Product(id=2, name="Drill", price=Decimal("99.00"), status="active", sort_order=1, category=hardware),
                    Product(id=3, name="Novel", price=Decimal("8.00"), status="draft", sort_order=2, category=books,
                            description="a hammer of a story"),
                    Product(
                        id=4,
                        name="Old saw",
                        price=Decimal("5.00"),
                        status="active",
                        sort_order=4,
                        deleted_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
                    ),
                ]
            )
            session.commit()

    @classmethod
    def tearDownClass(cls):
        cls.engine.dispose()

    def _ids(self, plan) -> list[int]:
        with Session(self.engine) as session:
            return [row.id for row in session.scalars(plan.statement()).all()]

    def _policy(self, **overrides) -> ResourcePolicy:
        options = {
            "resource_name": "products",
            "sortable": ("name",),
            "filterable": ("status",),
        }
        options.update(overrides)
        return ResourcePolicy(**options)

    def test_disallowed_sort_field_is_skipped(self):
        plan = build_query(Product, self._policy(), _params(sort_by="price"))
        self.assertEqual(plan.orderings, [])

    def test_allowed_sort_field_with_direction(self):
        plan = build_query(Product, self._policy(), _params(sort_by="name", sort_direction="DESC"))
        self.assertEqual(plan.orderings, [Ordering("name", "desc")])
        self.assertEqual(self._ids(plan), [4, 3, 1, 2])

    def test_unknown_direction_defaults_to_asc(self):
        plan = build_query(Product, self._policy(), _params(sort_by="name", sort_direction="sideways"))
        self.assertEqual(plan.orderings, [Ordering("name", "asc")])

    def test_sort_skipped_when_sortable_empty(self):
        plan = build_query(Product, self._policy(sortable=()), _params(sort_by="name"))
        self.assertEqual(plan.orderings, [])

    def test_wildcard_sort_accepts_mapped_column_and_drops_unmapped(self):
        policy = self._policy(sortable=("*",))
        self.assertEqual(build_query(Product, policy, _params(sort_by="sort_order")).orderings, [Ordering("sort_order")])
        self.assertEqual(build_query(Product, policy, _params(sort_by="ghost")).orderings, [])

    def test_allowed_filter_adds_one_eq_predicate(self):
        plan = build_query(Product, self._policy(), _params(filter={"status": "active"}))
        self.assertEqual(len(plan.predicates), 1)
        self.assertEqual(sorted(self._ids(plan)), [1, 2, 4])

    def test_disallowed_filter_is_dropped(self):
        plan = build_query(Product, self._policy(), _params(filter={"price:gt": "5"}))
        self.assertEqual(plan.predicates, [])

    def test_padded_filter_field_is_not_the_allowed_field(self):
        plan = build_query(Product, self._policy(), _params(filter={" status": "active", "status:EQ": "draft"}))
        self.assertEqual(len(plan.predicates), 1)
        self.assertEqual(sorted(self._ids(plan)), [3])

    def test_empty_filterable_drops_every_filter(self):
        plan = build_query(Product, self._policy(filterable=()), _params(filter={"status": "active", "name": "x"}))
        self.assertEqual(plan.predicates, [])

    def test_filter_operators_against_data(self):
        policy = self._policy(filterable=("price", "sort_order", "status"))
        cases = [
            ({"price:gte": "12.50"}, [1, 2]),
            ({"price:lt": "10"}, [3, 4]),
            ({"sort_order:in": "1,3"}, [1, 2]),
            ({"sort_order:in": ["2"]}, [3]),
            ({"sort_order:not_in": "1,2"}, [1, 4]),
            ({"price:between": "8,13"}, [1, 3]),
            ({"price:between": "8"}, [1, 2, 3, 4]),
            ({"status:not": "active"}, [3]),
            ({"status": None}, [1, 2, 3, 4]),
        ]
        for filters, expected in cases:
            plan = build_query(Product, policy, _params(filter=filters))
            self.assertEqual(sorted(self._ids(plan)), expected, filters)

    def test_uncoercible_filter_value_is_dropped(self):
        policy = self._policy(filterable=("sort_order",))
        plan = build_query(Product, policy, _params(filter={"sort_order:gt": "abc"}))
        self.assertEqual(plan.predicates, [])

    def test_search_is_one_or_group_combined_with_filters(self):
        policy = self._policy(searchable=("name", "description"))
        plan = build_query(Product, policy, _params(search="hammer"))
        self.assertEqual(len(plan.predicates), 1)
        self.assertEqual(sorted(self._ids(plan)), [1, 3])

        plan = build_query(Product, policy, _params(search="hammer", filter={"status": "active"}))
        self.assertEqual(len(plan.predicates), 2)
        self.assertEqual(self._ids(plan), [1])

    def test_search_skipped_without_searchable_fields(self):
        plan = build_query(Product, self._policy(), _params(search="hammer"))
        self.assertEqual(plan.predicates, [])

    def test_search_backend_restricts_to_returned_keys(self):
        calls = []

        def backend(term):
            calls.append(term)
            return ["2", 4]

        policy = self._policy(searchable=("name",), search_backend=backend)
        plan = build_query(Product, policy, _params(search="hammer", filter={"status": "active"}))
        self.assertEqual(calls, ["hammer"])
        self.assertEqual(sorted(self._ids(plan)), [2, 4])

    def test_search_backend_without_keys_matches_nothing(self):
        for result in ([], None):
            policy = self._policy(searchable=("name",), search_backend=lambda term, result=result: result)
            plan = build_query(Product, policy, _params(search="hammer"))
            self.assertEqual(self._ids(plan), [], result)

    def test_failing_search_backend_matches_nothing(self):
        def backend(term):
            raise RuntimeError("index offline")

        policy = self._policy(searchable=("name",), search_backend=backend)
        with self.assertLogs("crudforge.services.query_builder", level="WARNING") as captured:
            plan = build_query(Product, policy, _params(search="hammer"))
        self.assertEqual(self._ids(plan), [])
        self.assertIn("search_backend_failed model=Product", captured.output[0])

        bad_keys = self._policy(searchable=("name",), search_backend=lambda term: ["not-an-id"])
        with self.assertLogs("crudforge.services.query_builder", level="WARNING"):
            plan = build_query(Product, bad_keys, _params(search="hammer"))
        self.assertEqual(self._ids(plan), [])

    def test_search_backend_needs_searchable_fields(self):
        def backend(term):
            raise AssertionError("backend should not run")

        plan = build_query(Product, self._policy(search_backend=backend), _params(search="hammer"))
        self.assertEqual(plan.predicates, [])

    def test_dropped_directives_log_request_id(self):
        with self.assertLogs("crudforge.services.query_builder", level="DEBUG") as captured:
            build_query(Product, self._policy(), _params(sort_by="price"))
        self.assertIn("query_field_dropped", captured.output[0])
        self.assertIn("field=price request_id=None", captured.output[0])

    def test_soft_delete_scope(self):
        policy = self._policy(soft_deletes=True)
        default = build_query(Product, policy, _params())
        self.assertIs(default.trashed, TrashedScope.EXCLUDE)
        self.assertEqual(sorted(self._ids(default)), [1, 2, 3])

        included = build_query(Product, policy, _params(include_trashed="1"))
        self.assertIs(included.trashed, TrashedScope.INCLUDE)
        self.assertEqual(sorted(self._ids(included)), [1, 2, 3, 4])

        only = build_query(Product, policy, _params(only_trashed="true"))
        self.assertEqual(self._ids(only), [4])

        both = build_query(Product, policy, _params(only_trashed="1", include_trashed="1"))
        self.assertIs(both.trashed, TrashedScope.ONLY)
        self.assertEqual(self._ids(both), [4])

    def test_soft_delete_scope_ignored_when_disabled(self):
        plan = build_query(Product, self._policy(), _params(only_trashed="1"))
        self.assertIsNone(plan.trashed)
        self.assertEqual(sorted(self._ids(plan)), [1, 2, 3, 4])

    def test_relations_are_sanitized_and_validated(self):
        plan = build_query(Product, self._policy(), _params(**{"with": "category,cat<egory>,ghost,category.products"}))
        self.assertEqual(plan.relations, ["category", "category.products"])
        with Session(self.engine) as session:
            rows = session.scalars(plan.statement()).all()
            self.assertIn("category", rows[0].__dict__)

    def test_field_selection_forces_primary_key_first(self):
        plan = build_query(Product, self._policy(), _params(fields="name,price"))
        self.assertEqual(plan.columns, ["id", "name", "price"])

        plan = build_query(Product, self._policy(), _params(fields=["na;me", "id", "secret_note", "bogus"]))
        self.assertEqual(plan.columns, ["name", "id", "secret_note"])

    def test_field_selection_skips_hidden_fields(self):
        policy = self._policy(hidden=("secret_note",))
        plan = build_query(Product, policy, _params(fields="secret_note,name"))
        self.assertEqual(plan.columns, ["id", "name"])


class QueryBuilderStrictModeTests(unittest.TestCase):
    def _policy(self, **overrides) -> ResourcePolicy:
        options = {"resource_name": "products", "sortable": ("name",), "filterable": ("status",)}
        options.update(overrides)
        return ResourcePolicy(**options)

    def test_strict_sort_raises_with_allowed_fields(self):
        with self.assertRaises(InvalidFieldError) as ctx:
            build_query(Product, self._policy(), _params(sort_by="price"), strict=True)
        self.assertEqual(ctx.exception.operation, "sort")
        self.assertEqual(ctx.exception.allowed_fields, ("name",))

    def test_strict_filter_raises(self):
        with self.assertRaises(InvalidFieldError) as ctx:
            build_query(Product, self._policy(), _params(filter={"price:gt": "5"}), strict=True)
        self.assertEqual(ctx.exception.field, "price")
        self.assertEqual(ctx.exception.operation, "filter")

    def test_strict_from_policy_flag(self):
        with self.assertRaises(InvalidFieldError):
            build_query(Product, self._policy(strict=True), _params(filter={"price": "5"}))

    def test_strict_wildcard_unmapped_column(self):
        with self.assertRaises(InvalidFieldError) as ctx:
            build_query(Product, self._policy(sortable=("*",)), _params(sort_by="ghost"), strict=True)
        self.assertIn("wildcard (*)", ctx.exception.message)

    def test_strict_bad_filter_value(self):
        policy = self._policy(filterable=("sort_order",))
        with self.assertRaises(InvalidParameterError):
            build_query(Product, policy, _params(filter={"sort_order": "abc"}), strict=True)

    def test_strict_empty_sortable_still_skips(self):
        plan = build_query(Product, self._policy(sortable=()), _params(sort_by="price"), strict=True)
        self.assertEqual(plan.orderings, [])


if __name__ == "__main__":
    unittest.main()
