"""
Unit tests for the storage plan and per-operation overrides.

Tests cover:
- Entity mappings
- Default implementations per operation kind
- Skipped entities, services and methods
- Oneof storage strategies
- Override adapter: forwarding, missing and unknown operations
"""

import pytest
from entgen.ir.model import OperationKind
from entgen.plan import (
    DefaultForwardingStorage,
    DefaultStrategy,
    MissingOperationError,
    UnknownOperationError,
)
from tests.builders import (
    blog_schema,
    compile_ok,
    entity,
    field,
    make_schema,
    message,
    method,
    pk,
    service,
)


@pytest.fixture
def storage():
    return compile_ok(blog_schema(), default_page_size=25, max_page_size=50).storage


class TestEntityMappings:
    """Tests for per-entity storage mappings."""

    def test_user_mapping(self, storage):
        """Mappings carry table, key and columns."""
        user = storage.get_entity("blog.User")

        assert user.table_name == "users"
        assert user.primary_key == "id"
        assert [c.column_name for c in user.columns] == [
            "id",
            "email",
            "display_name",
            "age",
            "password_hash",
        ]
        assert user.get_column("id").auto_increment is True
        assert user.get_column("email").unique is True
        assert user.get_column("age").nullable is True

    def test_relation_mappings(self, storage):
        """Relations carry resolved tables and keys."""
        post = storage.get_entity("blog.Post")
        relations = {r.name: r for r in post.relations}

        assert relations["author"].target_table == "users"
        assert relations["author"].foreign_key == "author_id"
        assert relations["tags"].through_table == "post_tag"
        assert relations["tags"].through_target_key == "tag_id"
        assert relations["post_tags"].kind == "has_many"

    def test_skipped_entity_not_mapped(self):
        """Skipped entities get no mapping."""
        plan = compile_ok(make_schema(entity("User", pk()), entity("Audit", pk(), skip=True))).storage

        assert plan.get_entity("blog.User") is not None
        assert plan.get_entity("blog.Audit") is None


class TestStorageInterfaces:
    """Tests for service storage interfaces."""

    def test_operations_follow_methods(self, storage):
        """One operation per method, in declaration order."""
        interface = storage.get_interface("blog.UserService")

        assert interface.trait_name == "UserServiceStorage"
        assert [o.name for o in interface.operations] == [
            "get_user",
            "list_users",
            "create_user",
            "delete_user",
            "reset_passwords",
        ]

    def test_get_default(self, storage):
        """get looks up by primary key."""
        op = storage.get_interface("blog.UserService").get_operation("get_user")

        assert op.operation is OperationKind.GET
        assert op.default.strategy is DefaultStrategy.GET_BY_KEY
        assert op.default.table_name == "users"
        assert op.default.key_column == "id"

    def test_list_default(self, storage):
        """list filters and paginates by key with configured page sizes."""
        default = storage.get_interface("blog.UserService").get_operation("list_users").default

        assert default.strategy is DefaultStrategy.FILTER_PAGINATE
        assert default.order_by == (("id", "asc"),)
        assert default.page_size == 25
        assert default.max_page_size == 50
        assert "email" in default.columns

    def test_create_default_skips_auto_increment(self, storage):
        """create inserts every column except auto-increment keys."""
        default = storage.get_interface("blog.UserService").get_operation("create_user").default

        assert default.strategy is DefaultStrategy.INSERT
        assert "id" not in default.columns
        assert default.columns[0] == "email"

    def test_custom_requires_override(self, storage):
        """Custom operations have no default."""
        op = storage.get_interface("blog.UserService").get_operation("reset_passwords")

        assert op.default is None
        assert op.requires_override is True
        assert op.to_dict()["overridable"] is True

    def test_update_default(self):
        """update writes every non-key column."""
        schema = make_schema(
            entity("Post", pk(), field("title", 2), field("body", 3)),
            message("Req"),
            services=[service("PostService", method("UpdatePost", "Req", "Post"))],
        )
        interface = compile_ok(schema).storage.get_interface("blog.PostService")
        default = interface.get_operation("update_post").default

        assert default.strategy is DefaultStrategy.UPDATE_BY_KEY
        assert default.columns == ("title", "body")

    def test_no_implementation_means_no_defaults(self):
        """generate_implementation false leaves every operation to overrides."""
        schema = make_schema(
            entity("Post", pk()),
            message("Req"),
            services=[
                service(
                    "PostService",
                    method("GetPost", "Req", "Post"),
                    storage={"generate_implementation": False},
                )
            ],
        )
        interface = compile_ok(schema).storage.get_interface("blog.PostService")

        assert interface.operations[0].requires_override is True

    def test_skipped_method_and_service(self):
        """Skipped methods and services get no storage operations."""
        schema = make_schema(
            entity("Post", pk()),
            message("Req"),
            services=[
                service(
                    "PostService",
                    method("GetPost", "Req", "Post"),
                    method("DeletePost", "Req", "Req", storage={"skip": True}),
                ),
                service("Internal", method("Ping", "Req", "Req"), storage={"skip": True}),
                service(
                    "ReadOnly",
                    method("Ping", "Req", "Req"),
                    storage={"generate_storage": False},
                ),
            ],
        )
        plan = compile_ok(schema).storage

        assert [o.name for o in plan.get_interface("blog.PostService").operations] == ["get_post"]
        assert plan.get_interface("blog.Internal") is None
        assert plan.get_interface("blog.ReadOnly") is None


class TestDefaultForwardingStorage:
    """Tests for the per-operation override adapter."""

    @pytest.fixture
    def interface(self, storage):
        return storage.get_interface("blog.UserService")

    def _defaults(self, calls):
        def make(name):
            def default(request):
                calls.append(("default", name))
                return {"op": name}

            return default

        return {n: make(n) for n in ("get_user", "list_users", "create_user", "delete_user")}

    @pytest.mark.asyncio
    async def test_override_one_operation(self, interface):
        """Overriding one operation leaves the others on their defaults."""
        calls = []

        async def list_users(request):
            calls.append(("override", "list_users"))
            return ["custom"]

        store = DefaultForwardingStorage(
            interface,
            defaults=self._defaults(calls),
            overrides={"list_users": list_users, "reset_passwords": lambda r: "done"},
        )

        assert await store.invoke("list_users", {}) == ["custom"]
        assert await store.invoke("get_user", {"id": 1}) == {"op": "get_user"}
        assert await store.invoke("reset_passwords", {}) == "done"
        assert calls == [("override", "list_users"), ("default", "get_user")]
        assert store.source_of("list_users") == "override"
        assert store.source_of("get_user") == "default"

    def test_custom_operation_must_be_overridden(self, interface):
        """A custom operation without an override is missing."""
        with pytest.raises(MissingOperationError) as exc_info:
            DefaultForwardingStorage(interface, defaults=self._defaults([]))

        assert exc_info.value.operations == ["reset_passwords"]

    def test_default_for_custom_operation_is_ignored(self, interface):
        """A default cannot stand in for a custom operation."""
        defaults = self._defaults([])
        defaults["reset_passwords"] = lambda r: None

        with pytest.raises(MissingOperationError):
            DefaultForwardingStorage(interface, defaults=defaults)

    def test_unknown_operation_rejected(self, interface):
        """Overrides must name operations of the interface."""
        with pytest.raises(UnknownOperationError, match="ban_user"):
            DefaultForwardingStorage(
                interface,
                defaults=self._defaults([]),
                overrides={"ban_user": lambda r: None, "reset_passwords": lambda r: None},
            )

    @pytest.mark.asyncio
    async def test_from_object(self, interface):
        """Methods of an implementation object act as overrides."""

        class Store:
            async def reset_passwords(self, request):
                return "reset"

            def helper(self):
                return "not an operation"

        store = DefaultForwardingStorage.from_object(
            interface, defaults=self._defaults([]), implementation=Store()
        )

        assert await store.invoke("reset_passwords", {}) == "reset"
        assert store.source_of("reset_passwords") == "override"
        with pytest.raises(UnknownOperationError):
            await store.invoke("helper", {})


def order_schema(strategy, **oneof):
    order = entity(
        "Order",
        pk(),
        field("card_token", 2, oneof="payment"),
        field("iban", 3, oneof="payment"),
        field("note", 4),
        oneofs=[{"name": "payment", "strategy": strategy, **oneof}],
    )
    return make_schema(
        order,
        message("Req"),
        services=[
            service(
                "OrderService",
                method("CreateOrder", "Req", "Order"),
                method("UpdateOrder", "Req", "Order"),
                method("ListOrders", "Req", "Req"),
            )
        ],
    )


class TestOneofMappings:
    """Tests for oneof storage strategies."""

    def test_flatten(self):
        """flatten stores one nullable column per variant."""
        storage = compile_ok(order_schema("flatten")).storage
        mapping = storage.get_entity("blog.Order")
        create = storage.get_interface("blog.OrderService").get_operation("create_order")

        assert mapping.get_oneof("payment").columns == ("card_token", "iban")
        assert mapping.get_column("iban").nullable is True
        assert mapping.get_column("iban").oneof == "payment"
        assert create.default.columns == ("card_token", "iban", "note")

    def test_json(self):
        """json collapses the variants into one column named after the oneof."""
        storage = compile_ok(order_schema("json")).storage
        interface = storage.get_interface("blog.OrderService")

        assert storage.get_entity("blog.Order").get_oneof("payment").columns == ("payment",)
        assert interface.get_operation("create_order").default.columns == ("payment", "note")
        assert interface.get_operation("list_orders").default.columns == ("id", "note")

    def test_tagged(self):
        """tagged stores a discriminator and a value column."""
        storage = compile_ok(order_schema("tagged")).storage
        oneof = storage.get_entity("blog.Order").get_oneof("payment")
        update = storage.get_interface("blog.OrderService").get_operation("update_order")

        assert oneof.columns == ("payment_type", "payment_value")
        assert oneof.discriminator == "payment_type"
        assert update.default.columns == ("payment_type", "payment_value", "note")

    def test_tagged_discriminator_override(self):
        """discriminator_column renames the tag column."""
        storage = compile_ok(order_schema("tagged", discriminator_column="method")).storage
        oneof = storage.get_entity("blog.Order").get_oneof("payment")

        assert oneof.to_dict()["columns"] == ["method", "payment_value"]

    def test_collapsed_members_not_filterable(self):
        """Variants stored inside a json column get no filter group."""
        node = compile_ok(order_schema("json")).query.get_node("blog.Order")

        assert node.filter.get_group("iban") is None
        assert "iban" not in node.order_by.fields
        assert node.filter.get_group("note") is not None
