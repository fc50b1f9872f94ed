"""
Unit tests for the RPC plan and its reference dispatcher.

Tests cover:
- Method bindings and step sequences
- Skipped services and methods
- Dispatch: decode, convert, invoke, encode
"""

from dataclasses import dataclass

import pytest
from google.protobuf import struct_pb2
from entgen.errors import ValidationAggregateError
from entgen.plan import DefaultForwardingStorage, RpcDispatcher, RpcStep, UnboundMethodError
from entgen.plan.rpc import decode_request, encode_response
from tests.builders import (
    blog_schema,
    compile_ok,
    entity,
    make_schema,
    message,
    method,
    pk,
    service,
)


@pytest.fixture
def compiled():
    return compile_ok(blog_schema())


@dataclass
class Row:
    id: int
    email: str


class TestRpcPlan:
    """Tests for build_rpc_plan."""

    def test_service_names(self, compiled):
        """Services carry struct and storage trait names."""
        rpc_service = compiled.rpc.get_service("blog.UserService")

        assert rpc_service.struct_name == "UserServiceGrpcService"
        assert rpc_service.storage_trait == "UserServiceStorage"
        assert [b.method for b in rpc_service.bindings] == [
            "GetUser",
            "ListUsers",
            "CreateUser",
            "DeleteUser",
            "ResetPasswords",
        ]

    def test_binding_without_validation(self, compiled):
        """A request without a validation plan is invoked as decoded."""
        binding = compiled.rpc.get_service("blog.UserService").get_binding("GetUser")

        assert binding.handler == "get_user"
        assert binding.storage_operation == "get_user"
        assert binding.domain_type is None
        assert binding.steps == (RpcStep.DECODE, RpcStep.INVOKE, RpcStep.ENCODE)

    def test_binding_with_validation(self, compiled):
        """A request with a validation plan is converted before invoking."""
        binding = compiled.rpc.get_service("blog.UserService").get_binding("CreateUser")

        assert binding.domain_type == "ValidatedCreateUserRequest"
        assert binding.steps == (
            RpcStep.DECODE,
            RpcStep.CONVERT,
            RpcStep.INVOKE,
            RpcStep.ENCODE,
        )

    def test_skips(self):
        """grpc skip removes services and methods; storage skip removes invoke."""
        schema = make_schema(
            entity("Post", pk()),
            message("Req"),
            services=[
                service(
                    "PostService",
                    method("GetPost", "Req", "Post"),
                    method("DeletePost", "Req", "Req", grpc={"skip": True}),
                    method("ListPosts", "Req", "Req", storage={"skip": True}),
                ),
                service("Hidden", method("Ping", "Req", "Req"), grpc={"skip": True}),
            ],
        )
        rpc = compile_ok(schema).rpc

        assert rpc.get_service("blog.Hidden") is None
        post_service = rpc.get_service("blog.PostService")
        assert [b.method for b in post_service.bindings] == ["GetPost", "ListPosts"]
        list_posts = post_service.get_binding("ListPosts")
        assert list_posts.storage_operation is None
        assert list_posts.steps == (RpcStep.DECODE, RpcStep.ENCODE)


class TestCodec:
    """Tests for request decoding and response encoding."""

    def test_decode_struct_and_bytes(self):
        """Struct messages and their serialized bytes decode to mappings."""
        struct = struct_pb2.Struct()
        struct.update({"email": "ada@example.com"})

        assert decode_request(struct) == {"email": "ada@example.com"}
        assert decode_request(struct.SerializeToString()) == {"email": "ada@example.com"}

    def test_decode_rejects_other_types(self):
        """Unsupported request types are rejected."""
        with pytest.raises(ValueError, match="Unsupported request type"):
            decode_request(42)

    def test_encode_dataclasses_and_lists(self):
        """Results encode to plain mappings."""
        assert encode_response(Row(1, "a@b.c")) == {"id": 1, "email": "a@b.c"}
        assert encode_response([Row(1, "a@b.c")]) == [{"id": 1, "email": "a@b.c"}]
        assert encode_response(None) is None


class TestRpcDispatcher:
    """Tests for RpcDispatcher."""

    @pytest.fixture
    def dispatcher(self, compiled):
        interface = compiled.storage.get_interface("blog.UserService")
        created = []

        async def create_user(domain):
            created.append(domain)
            return Row(id=7, email=domain.email)

        store = DefaultForwardingStorage(
            interface,
            defaults={
                "get_user": lambda request: {"id": request["id"], "email": "ada@example.com"},
                "list_users": lambda request: [],
                "create_user": create_user,
                "delete_user": lambda request: None,
            },
            overrides={"reset_passwords": lambda request: {"reset": 0}},
        )
        rpc_service = compiled.rpc.get_service("blog.UserService")
        result = RpcDispatcher(rpc_service, store, compiled.validation_plans)
        result.created = created
        return result

    @pytest.mark.asyncio
    async def test_call_without_conversion(self, dispatcher):
        """The decoded mapping is passed to storage."""
        response = await dispatcher.call("GetUser", {"id": "u1"})

        assert response == {"id": "u1", "email": "ada@example.com"}

    @pytest.mark.asyncio
    async def test_call_converts_request(self, dispatcher):
        """Storage receives the validated domain value."""
        struct = struct_pb2.Struct()
        struct.update({"email": "ada@example.com", "display_name": "Ada"})

        response = await dispatcher.call("CreateUser", struct)

        assert response == {"id": 7, "email": "ada@example.com"}
        domain = dispatcher.created[0]
        assert type(domain).__name__ == "ValidatedCreateUserRequest"
        assert domain.display_name == "Ada"

    @pytest.mark.asyncio
    async def test_invalid_request_never_reaches_storage(self, dispatcher):
        """Conversion errors are raised before invoking storage."""
        with pytest.raises(ValidationAggregateError) as exc_info:
            await dispatcher.call("CreateUser", {"email": "", "display_name": "Ada"})

        assert [e.code for e in exc_info.value.errors] == ["required", "email"]
        assert dispatcher.created == []

    @pytest.mark.asyncio
    async def test_unknown_method(self, dispatcher):
        """Methods outside the service are rejected."""
        with pytest.raises(ValueError, match="Unknown method"):
            await dispatcher.call("BanUser", {})

    @pytest.mark.asyncio
    async def test_unbound_method(self, compiled):
        """A dispatcher without storage cannot invoke operations."""
        rpc_service = compiled.rpc.get_service("blog.UserService")

        with pytest.raises(UnboundMethodError):
            await RpcDispatcher(rpc_service, None).call("GetUser", {"id": 1})
