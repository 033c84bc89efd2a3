import pytest

from agegraph.errors import CoreError, ErrorKind
from agegraph.schema import (
    EdgeLabel,
    PropertyConstraints,
    PropertyDefinition,
    SchemaDefinition,
    SchemaVersion,
    VertexLabel,
)
from agegraph.storage.typemap import PropertyType


# ---------------------------------------------------------------------------
# Versions
# ---------------------------------------------------------------------------


def test_version_parse_and_str() -> None:
    version = SchemaVersion.parse("1.2.3-rc.1+build.7")

    assert (version.major, version.minor, version.patch) == (1, 2, 3)
    assert version.prerelease == "rc.1"
    assert version.build == "build.7"
    assert str(version) == "1.2.3-rc.1+build.7"


@pytest.mark.parametrize("text", ["1.2", "v1.2.3", "1.2.3.4", "", "a.b.c"])
def test_version_parse_rejects(text) -> None:
    with pytest.raises(CoreError) as info:
        SchemaVersion.parse(text)
    assert info.value.kind is ErrorKind.VALIDATION


def test_version_ordering() -> None:
    ordered = [
        "1.0.0-alpha",
        "1.0.0-alpha.1",
        "1.0.0-alpha.beta",
        "1.0.0-beta.2",
        "1.0.0-beta.11",
        "1.0.0",
        "1.0.1",
        "1.2.0",
        "2.0.0",
    ]
    versions = [SchemaVersion.parse(v) for v in ordered]

    assert sorted(reversed(versions)) == versions
    assert SchemaVersion.parse("1.0.0+a") == SchemaVersion.parse("1.0.0+b")
    assert SchemaVersion.parse("1.10.0") > SchemaVersion.parse("1.9.0")


def test_version_bump() -> None:
    version = SchemaVersion.parse("1.4.2")

    assert str(version.bump("major")) == "2.0.0"
    assert str(version.bump("minor")) == "1.5.0"
    assert str(version.bump("patch")) == "1.4.3"
    with pytest.raises(ValueError):
        version.bump("build")


# ---------------------------------------------------------------------------
# Properties
# ---------------------------------------------------------------------------


def test_property_type_is_coerced() -> None:
    definition = PropertyDefinition("number")

    assert definition.type is PropertyType.NUMBER
    assert not definition.has_default


def test_empty_constraints_are_dropped() -> None:
    assert PropertyDefinition("string", constraints=PropertyConstraints()).constraints is None


def test_invalid_default_is_rejected() -> None:
    with pytest.raises(CoreError) as info:
        PropertyDefinition("integer", default="ten")

    assert info.value.kind is ErrorKind.VALIDATION
    assert info.value.cause.kind is ErrorKind.TYPE_MISMATCH


def test_default_must_satisfy_constraints() -> None:
    with pytest.raises(CoreError):
        PropertyDefinition("integer", default=200, constraints=PropertyConstraints(max=150))


def test_constraint_bounds_and_pattern_are_checked() -> None:
    with pytest.raises(CoreError):
        PropertyConstraints(min=5, max=1)
    with pytest.raises(CoreError):
        PropertyConstraints(pattern="(unclosed")


def test_check_value_numeric_range() -> None:
    age = PropertyDefinition("integer", constraints=PropertyConstraints(min=0, max=150))

    age.check_value(0)
    age.check_value(150)
    with pytest.raises(CoreError) as info:
        age.check_value(-1)
    assert info.value.context["constraint"] == "min"
    with pytest.raises(CoreError) as info:
        age.check_value(1.5)
    assert info.value.kind is ErrorKind.TYPE_MISMATCH


def test_check_value_string_length_and_pattern() -> None:
    code = PropertyDefinition(
        "string", constraints=PropertyConstraints(min=2, max=3, pattern="[A-Z]+")
    )

    code.check_value("NL")
    with pytest.raises(CoreError) as info:
        code.check_value("NLDE")
    assert info.value.context["constraint"] == "max"
    with pytest.raises(CoreError) as info:
        code.check_value("nl")
    assert info.value.context["constraint"] == "pattern"


def test_check_value_array_length() -> None:
    tags = PropertyDefinition("array", constraints=PropertyConstraints(max=2))

    tags.check_value(["a", "b"])
    with pytest.raises(CoreError):
        tags.check_value(["a", "b", "c"])


# ---------------------------------------------------------------------------
# Labels and schemas
# ---------------------------------------------------------------------------


def test_label_properties_are_frozen() -> None:
    properties = {"name": PropertyDefinition("string")}
    label = VertexLabel(properties=properties)
    properties["extra"] = PropertyDefinition("string")

    assert list(label.properties) == ["name"]
    with pytest.raises(TypeError):
        label.properties["age"] = PropertyDefinition("integer")


def test_with_and_without_property() -> None:
    label = VertexLabel(properties={"name": PropertyDefinition("string")})

    extended = label.with_property("age", PropertyDefinition("integer"))
    assert list(extended.properties) == ["name", "age"]
    assert list(label.properties) == ["name"]
    assert list(extended.without_property("name").properties) == ["age"]


def test_invalid_property_name() -> None:
    with pytest.raises(CoreError) as info:
        VertexLabel(properties={"bad name": PropertyDefinition("string")})
    assert info.value.kind is ErrorKind.INVALID_IDENTIFIER


def test_dangling_edge_endpoints(people_schema) -> None:
    with pytest.raises(CoreError) as info:
        SchemaDefinition(
            "1.0.0",
            vertices=people_schema.vertices,
            edges={"WORKS_AT": EdgeLabel(from_vertex="Person", to_vertex="Company")},
        )

    assert info.value.kind is ErrorKind.VALIDATION
    assert info.value.context["endpoints"] == ("WORKS_AT.toVertex=Company",)


def test_schema_lookup(people_schema) -> None:
    assert people_schema.version == SchemaVersion(1, 0, 0)
    assert people_schema.vertex("Person").properties["name"].required
    assert people_schema.edge("KNOWS").from_vertex == "Person"
    with pytest.raises(CoreError):
        people_schema.vertex("Company")
    with pytest.raises(CoreError):
        people_schema.edge("LIKES")


def test_empty_schema_and_with_version(people_schema) -> None:
    empty = SchemaDefinition.empty()

    assert str(empty.version) == "0.0.0"
    assert not empty.vertices and not empty.edges
    assert str(people_schema.with_version("1.1.0").version) == "1.1.0"
    assert str(people_schema.version) == "1.0.0"
