from db.schema import COLLECTIONS, ENUMS, SCHEMA_CONTEXT, get_collection, render_schema


class TestCollections:
    def test_credential_tables_are_not_exposed(self):
        models = {c.model for c in COLLECTIONS.values()}
        assert not models & {"Account", "Session", "PushSubscription", "Otp"}

    def test_credential_columns_are_hidden(self):
        user = get_collection("user")
        assert user.field("password").hidden
        assert user.field("oneTimePassword").hidden
        visible = {f.name for f in user.visible_fields()}
        assert "password" not in visible
        assert "username" in visible

    def test_relations_point_at_real_columns(self):
        for c in COLLECTIONS.values():
            for rel in c.relations:
                target = COLLECTIONS[rel.target]
                assert c.field(rel.local) is not None, f"{c.model}.{rel.name} local key"
                assert target.field(rel.foreign) is not None, f"{c.model}.{rel.name} foreign key"

    def test_enum_fields_use_declared_enums(self):
        scalar_types = {"String", "Int", "Float", "Boolean", "DateTime", "Json"}
        for c in COLLECTIONS.values():
            for f in c.fields:
                assert f.type in scalar_types or f.type in ENUMS, f"{c.model}.{f.name}"

    def test_unique_keys_name_real_columns(self):
        for c in COLLECTIONS.values():
            assert c.unique_keys[0] == ("id",)
            for key in c.unique_keys:
                for name in key:
                    assert c.field(name) is not None, f"{c.model} unique {key}"

    def test_compound_unique_keys(self):
        assert ("username", "classId") in get_collection("attendance").unique_keys
        assert ("username",) in get_collection("user").unique_keys

    def test_unknown_collection(self):
        assert get_collection("account") is None


class TestRenderSchema:
    def test_lists_models_with_accessors(self):
        text = render_schema()
        assert "model Course {  // accessed as db.course" in text
        assert "enum Role { INSTRUCTOR MENTOR STUDENT ADMIN }" in text

    def test_hidden_fields_are_not_described(self):
        text = render_schema()
        assert "password" not in text.lower()

    def test_relations_are_described(self):
        text = render_schema()
        assert "  enrolledUsers EnrolledUsers[]" in text
        assert "  createdBy User (Course.createdById -> User.id)" in text
        assert "  @@unique([username, classId])" in text

    def test_schema_context_mentions_relationships(self):
        assert "Key Relationships to Remember" in SCHEMA_CONTEXT
