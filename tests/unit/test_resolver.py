"""
Unit tests for relation resolution.

Tests cover:
- Target and foreign-key resolution
- Inverse pairing and synthesis
- Conflicting inverses
- many_to_many join entities, including self-referential ones
- Cross-package targets
- Determinism and graph freezing
"""

import pytest
from entgen.errors import Diagnostics, ErrorKind, GraphFrozenError
from entgen.ir import IrBuilder, Relation, RelationKind
from entgen.resolve import RelationGraph, RelationResolver
from entgen.schema.types import SchemaSet
from tests.builders import (
    blog_schema,
    entity,
    field,
    make_schema,
    make_settings,
    pk,
    relation,
    schema_file,
    user_and_post,
)


def resolve(schema):
    diagnostics = Diagnostics()
    ir = IrBuilder(diagnostics, make_settings()).build(schema)
    graph = RelationResolver(ir, diagnostics).resolve()
    return graph, diagnostics


def edge_names(graph, source):
    return [r.name for r in graph.outgoing(source)]


class TestRelationGraph:
    """Tests for RelationGraph."""

    def _edge(self, name="posts", target="blog.Post"):
        return Relation(
            source="blog.User",
            name=name,
            kind=RelationKind.HAS_MANY,
            declared_target="Post",
            target=target,
        )

    def test_add_and_lookup(self):
        """Edges are indexed by source and target."""
        graph = RelationGraph()
        edge = self._edge()

        graph.add(edge)

        assert graph.get("blog.User", "posts") == edge
        assert graph.outgoing("blog.User") == [edge]
        assert graph.incoming("blog.Post") == [edge]
        assert len(graph) == 1

    def test_unresolved_edge_rejected(self):
        """Only resolved relations can be added."""
        with pytest.raises(ValueError, match="not resolved"):
            RelationGraph().add(self._edge(target=None))

    def test_duplicate_edge_rejected(self):
        """Relation names are unique per source."""
        graph = RelationGraph()
        graph.add(self._edge())

        with pytest.raises(ValueError, match="already exists"):
            graph.add(self._edge())

    def test_freeze(self):
        """Freezing computes a fingerprint and blocks mutation."""
        graph = RelationGraph()
        graph.add(self._edge())

        fingerprint = graph.freeze()

        assert graph.frozen is True
        assert fingerprint.startswith("sha256:")
        assert graph.fingerprint == fingerprint
        with pytest.raises(GraphFrozenError):
            graph.add(self._edge("comments"))
        with pytest.raises(GraphFrozenError):
            graph.freeze()

    def test_fingerprint_changes_with_edges(self):
        """Different edges produce different fingerprints."""
        first, second = RelationGraph(), RelationGraph()
        first.add(self._edge("posts"))
        second.add(self._edge("articles"))

        assert first.freeze() != second.freeze()


class TestTargetsAndKeys:
    """Tests for target and key resolution."""

    def test_belongs_to_with_default_key(self):
        """belongs_to defaults its key to <target>_id on the declaring entity."""
        schema = make_schema(
            entity("User", pk()),
            entity(
                "Post",
                pk(),
                field("user_id", 2, "int64"),
                relations=[relation("user", "belongs_to", "User")],
            ),
        )
        graph, diagnostics = resolve(schema)

        assert not diagnostics
        user = graph.get("blog.Post", "user")
        assert user.target == "blog.User"
        assert user.foreign_key == "user_id"
        assert user.references == "id"
        assert user.key_owner == "blog.Post"

    def test_has_many_with_default_key(self):
        """has_many defaults its key to <source>_id on the target."""
        schema = make_schema(
            entity("User", pk(), relations=[relation("posts", "has_many", "Post")]),
            entity("Post", pk(), field("user_id", 2, "int64")),
        )
        graph, diagnostics = resolve(schema)

        assert not diagnostics
        posts = graph.get("blog.User", "posts")
        assert posts.foreign_key == "user_id"
        assert posts.key_owner == "blog.Post"

    def test_unknown_target(self):
        """A target that is not an entity is reported."""
        schema = user_and_post(post_relations=[relation("editor", "belongs_to", "Editor")])
        graph, diagnostics = resolve(schema)

        errors = diagnostics.of_kind(ErrorKind.UNKNOWN_RELATION_TARGET)
        assert [e.element for e in errors] == ["blog.Post.editor"]
        assert graph.get("blog.Post", "editor") is None

    def test_missing_key_column(self):
        """The foreign key column must exist on the key owner."""
        schema = user_and_post(
            post_relations=[relation("author", "belongs_to", "User", foreign_key="writer_id")]
        )
        _, diagnostics = resolve(schema)

        errors = diagnostics.of_kind(ErrorKind.RELATION_KEY_MISMATCH)
        assert len(errors) == 1
        assert "writer_id" in errors[0].message

    def test_key_type_mismatch(self):
        """The key column must have the referenced column's type."""
        schema = user_and_post(
            post_relations=[relation("author", "belongs_to", "User", foreign_key="title")]
        )
        _, diagnostics = resolve(schema)

        errors = diagnostics.of_kind(ErrorKind.RELATION_KEY_MISMATCH)
        assert len(errors) == 1
        assert "string" in errors[0].message and "int64" in errors[0].message

    def test_explicit_references(self):
        """references selects a non-key referenced column."""
        schema = user_and_post(
            post_relations=[
                relation(
                    "author_by_email",
                    "belongs_to",
                    "User",
                    foreign_key="title",
                    references="email",
                )
            ]
        )
        graph, diagnostics = resolve(schema)

        assert not diagnostics
        assert graph.get("blog.Post", "author_by_email").references == "email"

    def test_unknown_references(self):
        """references must name a column of the referenced entity."""
        schema = user_and_post(
            post_relations=[
                relation("author", "belongs_to", "User", foreign_key="author_id", references="uid")
            ]
        )
        _, diagnostics = resolve(schema)

        assert len(diagnostics.of_kind(ErrorKind.RELATION_KEY_MISMATCH)) == 1

    def test_failed_relation_gets_no_inverse(self):
        """Nothing is synthesized for a relation that failed to resolve."""
        schema = user_and_post(
            post_relations=[relation("author", "belongs_to", "User", foreign_key="writer_id")]
        )
        graph, _ = resolve(schema)

        assert edge_names(graph, "blog.User") == []


class TestInverses:
    """Tests for inverse pairing and synthesis."""

    def test_explicit_pair(self):
        """Two declared relations over the same key are paired."""
        graph, diagnostics = resolve(blog_schema())

        assert not diagnostics
        assert graph.get("blog.User", "posts").inverse == "author"
        assert graph.get("blog.Post", "author").inverse == "posts"
        assert not graph.get("blog.User", "posts").synthesized

    def test_belongs_to_synthesizes_has_many(self):
        """A belongs_to over a non-unique key gets a has_many inverse."""
        schema = user_and_post(
            post_relations=[relation("author", "belongs_to", "User", foreign_key="author_id")]
        )
        graph, diagnostics = resolve(schema)

        assert not diagnostics
        inverse = graph.get("blog.User", "posts")
        assert inverse.kind is RelationKind.HAS_MANY
        assert inverse.synthesized is True
        assert inverse.target == "blog.Post"
        assert inverse.foreign_key == "author_id"
        assert inverse.inverse == "author"
        assert graph.get("blog.Post", "author").inverse == "posts"

    def test_belongs_to_unique_key_synthesizes_has_one(self):
        """A belongs_to over a unique key gets a has_one inverse."""
        schema = make_schema(
            entity("User", pk()),
            entity(
                "Profile",
                pk(),
                field("user_id", 2, "int64", column={"unique": True}),
                relations=[relation("user", "belongs_to", "User")],
            ),
        )
        graph, diagnostics = resolve(schema)

        assert not diagnostics
        inverse = graph.get("blog.User", "profile")
        assert inverse.kind is RelationKind.HAS_ONE

    def test_has_many_synthesizes_belongs_to(self):
        """A has_many gets a belongs_to inverse on the target."""
        schema = user_and_post(
            user_relations=[relation("posts", "has_many", "Post", foreign_key="author_id")]
        )
        graph, diagnostics = resolve(schema)

        assert not diagnostics
        inverse = graph.get("blog.Post", "user")
        assert inverse.kind is RelationKind.BELONGS_TO
        assert inverse.target == "blog.User"
        assert inverse.foreign_key == "author_id"
        assert inverse.key_owner == "blog.Post"

    def test_explicit_inverse_with_other_name_wins(self):
        """A compatible declared inverse is used whatever its name."""
        schema = user_and_post(
            user_relations=[relation("articles", "has_many", "Post", foreign_key="author_id")],
            post_relations=[relation("writer", "belongs_to", "User", foreign_key="author_id")],
        )
        graph, diagnostics = resolve(schema)

        assert not diagnostics
        assert edge_names(graph, "blog.User") == ["articles"]
        assert edge_names(graph, "blog.Post") == ["writer"]
        assert graph.get("blog.User", "articles").inverse == "writer"

    def test_every_relation_has_exactly_one_inverse(self):
        """Each edge in the graph names an inverse that points back at it."""
        graph, diagnostics = resolve(blog_schema())

        assert not diagnostics
        for edge in graph.relations():
            inverse = graph.get(edge.target, edge.inverse)
            assert inverse is not None, edge.element
            assert inverse.inverse == edge.name
            assert inverse.target == edge.source

    def test_incompatible_references_conflict(self):
        """Relations over the same key with different references conflict."""
        schema = make_schema(
            entity(
                "User",
                pk(),
                field("legacy_id", 2, "int64", column={"unique": True}),
                relations=[
                    relation("posts", "has_many", "Post", foreign_key="author_id", references="legacy_id")
                ],
            ),
            entity(
                "Post",
                pk(),
                field("author_id", 2, "int64"),
                relations=[relation("author", "belongs_to", "User", foreign_key="author_id")],
            ),
        )
        _, diagnostics = resolve(schema)

        errors = diagnostics.of_kind(ErrorKind.CONFLICTING_INVERSE_RELATION)
        assert len(errors) == 1

    def test_two_candidates_conflict(self):
        """Two declared relations cannot both be the inverse of one relation."""
        schema = user_and_post(
            user_relations=[relation("posts", "has_many", "Post", foreign_key="author_id")],
            post_relations=[
                relation("author", "belongs_to", "User", foreign_key="author_id"),
                relation("writer", "belongs_to", "User", foreign_key="author_id"),
            ],
        )
        _, diagnostics = resolve(schema)

        assert len(diagnostics.of_kind(ErrorKind.CONFLICTING_INVERSE_RELATION)) == 1

    def test_synthesized_name_collides_with_column(self):
        """A synthesized inverse cannot shadow an existing member."""
        schema = make_schema(
            entity("User", pk(), field("posts", 2, "int32")),
            entity(
                "Post",
                pk(),
                field("author_id", 2, "int64"),
                relations=[relation("author", "belongs_to", "User", foreign_key="author_id")],
            ),
        )
        graph, diagnostics = resolve(schema)

        errors = diagnostics.of_kind(ErrorKind.CONFLICTING_INVERSE_RELATION)
        assert [e.element for e in errors] == ["blog.Post.author"]
        assert "posts" in errors[0].message

    def test_two_synthesized_inverses_collide(self):
        """Two relations needing the same inverse name conflict."""
        schema = make_schema(
            entity("User", pk()),
            entity(
                "Post",
                pk(),
                field("author_id", 2, "int64"),
                field("editor_id", 3, "int64"),
                relations=[
                    relation("author", "belongs_to", "User", foreign_key="author_id"),
                    relation("editor", "belongs_to", "User", foreign_key="editor_id"),
                ],
            ),
        )
        _, diagnostics = resolve(schema)

        errors = diagnostics.of_kind(ErrorKind.CONFLICTING_INVERSE_RELATION)
        assert [e.element for e in errors] == ["blog.Post.editor"]


class TestManyToMany:
    """Tests for many_to_many join resolution."""

    def test_join_keys(self):
        """Join keys come from the join entity's belongs_to relations."""
        graph, diagnostics = resolve(blog_schema())

        assert not diagnostics
        tags = graph.get("blog.Post", "tags")
        assert tags.through_entity == "blog.PostTag"
        assert tags.foreign_key == "post_id"
        assert tags.through_target_key == "tag_id"
        assert tags.references == "id"
        assert tags.key_owner == "blog.PostTag"

    def test_synthesized_inverse_swaps_keys(self):
        """The synthesized many_to_many inverse swaps the join keys."""
        graph, _ = resolve(blog_schema())

        posts = graph.get("blog.Tag", "posts")
        assert posts.kind is RelationKind.MANY_TO_MANY
        assert posts.synthesized is True
        assert posts.foreign_key == "tag_id"
        assert posts.through_target_key == "post_id"
        assert posts.inverse == "tags"

    def test_join_relations_get_inverses(self):
        """The join entity's belongs_to relations get has_many inverses."""
        graph, _ = resolve(blog_schema())

        assert edge_names(graph, "blog.Post") == ["author", "tags", "post_tags"]
        assert edge_names(graph, "blog.Tag") == ["posts", "post_tags"]

    def test_missing_through(self):
        """many_to_many must name a join entity."""
        schema = make_schema(
            entity("Post", pk(), relations=[relation("tags", "many_to_many", "Tag")]),
            entity("Tag", pk()),
        )
        _, diagnostics = resolve(schema)

        assert len(diagnostics.of_kind(ErrorKind.AMBIGUOUS_JOIN_ENTITY)) == 1

    def test_join_without_key_to_target(self):
        """The join entity needs a belongs_to toward each side."""
        schema = make_schema(
            entity(
                "Post",
                pk(),
                relations=[relation("tags", "many_to_many", "Tag", through="PostTag")],
            ),
            entity("Tag", pk()),
            entity(
                "PostTag",
                pk(),
                field("post_id", 2, "int64"),
                relations=[relation("post", "belongs_to", "Post")],
            ),
        )
        _, diagnostics = resolve(schema)

        errors = diagnostics.of_kind(ErrorKind.AMBIGUOUS_JOIN_ENTITY)
        assert [e.element for e in errors] == ["blog.Post.tags"]
        assert "found 1 and 0" in errors[0].message

    def test_self_referential(self):
        """A self-referential many_to_many picks its side by foreign_key."""
        schema = make_schema(
            entity(
                "User",
                pk(),
                relations=[
                    relation(
                        "following",
                        "many_to_many",
                        "User",
                        through="Follow",
                        foreign_key="follower_id",
                    ),
                    relation("outgoing", "has_many", "Follow", foreign_key="follower_id"),
                    relation("incoming", "has_many", "Follow", foreign_key="followee_id"),
                ],
            ),
            entity(
                "Follow",
                pk(),
                field("follower_id", 2, "int64"),
                field("followee_id", 3, "int64"),
                relations=[
                    relation("follower", "belongs_to", "User", foreign_key="follower_id"),
                    relation("followee", "belongs_to", "User", foreign_key="followee_id"),
                ],
            ),
        )
        graph, diagnostics = resolve(schema)

        assert not diagnostics
        following = graph.get("blog.User", "following")
        assert following.foreign_key == "follower_id"
        assert following.through_target_key == "followee_id"
        followers = graph.get("blog.User", following.inverse)
        assert followers.synthesized is True
        assert followers.foreign_key == "followee_id"


class TestResolution:
    """Tests for cross-package resolution and determinism."""

    def _two_packages(self, reverse=False):
        files = [
            schema_file("iam.proto", "iam", messages=[entity("User", pk())]),
            schema_file(
                "blog.proto",
                "blog",
                messages=[
                    entity(
                        "Post",
                        pk(),
                        field("author_id", 2, "int64"),
                        relations=[
                            relation("author", "belongs_to", "iam.User", foreign_key="author_id")
                        ],
                    )
                ],
            ),
        ]
        if reverse:
            files.reverse()
        return SchemaSet(files=tuple(files))

    def test_cross_package_target(self):
        """Targets resolve in other packages by qualified name."""
        graph, diagnostics = resolve(self._two_packages())

        assert not diagnostics
        assert graph.get("blog.Post", "author").target == "iam.User"
        assert graph.get("iam.User", "posts").target == "blog.Post"

    def test_file_order_does_not_matter(self):
        """Reordering files yields the same graph."""
        first, _ = resolve(self._two_packages())
        second, _ = resolve(self._two_packages(reverse=True))

        assert first.to_dict() == second.to_dict()
        assert first.fingerprint == second.fingerprint

    def test_resolution_is_idempotent(self):
        """Resolving the same IR twice yields equal graphs."""
        diagnostics = Diagnostics()
        ir = IrBuilder(diagnostics, make_settings()).build(blog_schema())

        first = RelationResolver(ir, diagnostics).resolve()
        second = RelationResolver(ir, diagnostics).resolve()

        assert first.to_dict() == second.to_dict()
        assert first.frozen and second.frozen

    def test_skipped_entity_is_a_target(self):
        """Relations may point at skipped entities."""
        schema = make_schema(
            entity("Audit", pk(), skip=True),
            entity(
                "Post",
                pk(),
                field("audit_id", 2, "int64"),
                relations=[relation("audit", "belongs_to", "Audit")],
            ),
        )
        graph, diagnostics = resolve(schema)

        assert not diagnostics
        assert graph.get("blog.Post", "audit").target == "blog.Audit"
