import pytest

from agegraph.migration import is_destructive, next_version, plan_migration
from agegraph.schema import EdgeLabel, PropertyConstraints, PropertyDefinition, SchemaDefinition, VertexLabel


def _with_person(schema: SchemaDefinition, person: VertexLabel, version: str = "1.0.0") -> SchemaDefinition:
    return SchemaDefinition(version, vertices={**schema.vertices, "Person": person}, edges=schema.edges)


def _with_age(schema: SchemaDefinition, age: PropertyDefinition, version: str = "1.0.0") -> SchemaDefinition:
    return _with_person(schema, schema.vertex("Person").with_property("age", age), version)


def test_add_property_is_safe(people_schema) -> None:
    person = people_schema.vertex("Person").with_property("email", PropertyDefinition("string"))
    plan = plan_migration(people_schema, _with_person(people_schema, person))

    [step] = plan.steps
    assert not step.destructive
    assert not plan.can_cause_data_loss
    assert [s.sql for s in step.statements] == [
        'ALTER TABLE "graph"."v_Person" ADD COLUMN "email" TEXT'
    ]
    assert str(step) == "add vertex property Person.email"


def test_remove_property_is_destructive(people_schema) -> None:
    person = people_schema.vertex("Person").without_property("age")
    plan = plan_migration(people_schema, _with_person(people_schema, person))

    [step] = plan.destructive_steps
    assert str(step) == "remove vertex property Person.age [destructive]"
    assert step.tables == ('"graph"."v_Person"',)
    assert plan.backup_tables() == ['"graph"."v_Person"']


def test_backup_tables_are_unique(people_schema) -> None:
    person = VertexLabel()
    plan = plan_migration(people_schema, _with_person(people_schema, person))

    assert len(plan.destructive_steps) == 2
    assert plan.backup_tables() == ['"graph"."v_Person"']


@pytest.mark.parametrize(
    ("old", "new", "destructive"),
    [
        ("integer", "number", False),
        ("date", "datetime", False),
        ("integer", "string", False),
        ("object", "any", False),
        ("number", "integer", True),
        ("string", "integer", True),
        ("datetime", "date", True),
    ],
)
def test_type_changes(people_schema, old, new, destructive) -> None:
    source = _with_age(people_schema, PropertyDefinition(old))
    target = _with_age(people_schema, PropertyDefinition(new))

    [change] = plan_migration(source, target).changes
    assert is_destructive(change) is destructive


def test_widening_alters_column_type(people_schema) -> None:
    plan = plan_migration(people_schema, _with_age(people_schema, PropertyDefinition("number")))

    assert [s.sql for s in plan.statements()] == [
        'ALTER TABLE "graph"."v_Person" ALTER COLUMN "age" TYPE DOUBLE PRECISION '
        'USING CAST("age" AS DOUBLE PRECISION)'
    ]


def test_required_without_default_is_destructive(people_schema) -> None:
    plan = plan_migration(
        people_schema, _with_age(people_schema, PropertyDefinition("integer", required=True))
    )

    [step] = plan.steps
    assert step.destructive
    assert [s.sql for s in step.statements] == [
        'ALTER TABLE "graph"."v_Person" ALTER COLUMN "age" SET NOT NULL'
    ]


def test_required_with_default_backfills(people_schema) -> None:
    plan = plan_migration(
        people_schema,
        _with_age(people_schema, PropertyDefinition("integer", required=True, default=0)),
    )

    [step] = plan.steps
    assert not step.destructive
    sql = [s.sql for s in step.statements]
    assert sql == [
        "ALTER TABLE \"graph\".\"v_Person\" ALTER COLUMN \"age\" SET DEFAULT CAST('0' AS INTEGER)",
        'UPDATE "graph"."v_Person" SET "age" = CAST(:value AS INTEGER) WHERE "age" IS NULL',
        'ALTER TABLE "graph"."v_Person" ALTER COLUMN "age" SET NOT NULL',
    ]
    assert step.statements[1].params == {"value": "0"}


def test_relaxing_required_drops_not_null(people_schema) -> None:
    person = people_schema.vertex("Person").with_property("name", PropertyDefinition("string"))
    plan = plan_migration(people_schema, _with_person(people_schema, person))

    [step] = plan.steps
    assert not step.destructive
    assert step.statements[0].sql.endswith('ALTER COLUMN "name" DROP NOT NULL')


def test_description_and_constraint_changes_need_no_step(people_schema) -> None:
    age = PropertyDefinition("integer", constraints=PropertyConstraints(min=0))
    person = people_schema.vertex("Person").with_property("age", age)
    target = SchemaDefinition(
        "1.0.0",
        vertices={"Person": VertexLabel(properties=person.properties, description="people")},
        edges={"KNOWS": EdgeLabel("Person", "Person", people_schema.edge("KNOWS").properties, "knows")},
    )

    plan = plan_migration(people_schema, target)

    assert len(plan.changes) == 3
    assert plan.is_empty


def test_endpoint_change_is_destructive(people_schema) -> None:
    target = SchemaDefinition(
        "1.0.0",
        vertices={**people_schema.vertices, "Company": VertexLabel()},
        edges={"KNOWS": EdgeLabel("Person", "Company")},
    )

    plan = plan_migration(people_schema, target)
    endpoint_step = next(s for s in plan.steps if s.change.label == "KNOWS" and s.change.property is None)

    assert endpoint_step.destructive
    assert endpoint_step.tables == ('"graph"."e_KNOWS"',)
    assert endpoint_step.statements[0].sql == 'DELETE FROM "graph"."e_KNOWS"'


def test_next_version(people_schema) -> None:
    added = people_schema.vertex("Person").with_property("email", PropertyDefinition("string"))
    removed = people_schema.vertex("Person").without_property("age")

    assert str(next_version(plan_migration(people_schema, people_schema))) == "1.0.0"
    assert str(next_version(plan_migration(people_schema, _with_person(people_schema, added)))) == "1.1.0"
    assert str(next_version(plan_migration(people_schema, _with_person(people_schema, removed)))) == "2.0.0"
    assert (
        str(next_version(plan_migration(people_schema, _with_age(people_schema, PropertyDefinition("number")))))
        == "1.0.1"
    )
    assert (
        str(next_version(plan_migration(people_schema, _with_person(people_schema, removed, "3.0.0"))))
        == "3.0.0"
    )
