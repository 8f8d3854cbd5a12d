from __future__ import annotations

import re

import pytest
from bson import ObjectId

from cosa.db.query import aggregate, apply_update, distinct, matches, project, sort_documents
from cosa.errors import UsageError

DOC = {
    "_id": ObjectId("5f1b2c3d4e5f6a7b8c9d0e1f"),
    "name": "Widget",
    "qty": 5,
    "tags": ["red", "blue"],
    "sizes": [{"w": 1, "h": 2}, {"w": 3, "h": 4}],
    "owner": {"name": "ada", "age": 36},
}


@pytest.mark.parametrize(
    ("query", "expected"),
    [
        ({"name": "Widget"}, True),
        ({"owner.name": "ada"}, True),
        ({"tags": "blue"}, True),
        ({"sizes.w": 3}, True),
        ({"qty": {"$gt": 4, "$lte": 5}}, True),
        ({"qty": {"$lt": 5}}, False),
        ({"qty": {"$in": [1, 5]}}, True),
        ({"qty": {"$nin": [1, 5]}}, False),
        ({"missing": None}, True),
        ({"missing": {"$exists": False}}, True),
        ({"qty": {"$exists": False}}, False),
        ({"name": {"$regex": "^wid", "$options": "i"}}, True),
        ({"name": re.compile("get$")}, True),
        ({"tags": {"$size": 2}}, True),
        ({"tags": {"$all": ["red", "blue"]}}, True),
        ({"sizes": {"$elemMatch": {"w": 3, "h": {"$gte": 4}}}}, True),
        ({"qty": {"$not": {"$gt": 4}}}, False),
        ({"$or": [{"qty": 1}, {"name": "Widget"}]}, True),
        ({"$and": [{"qty": 5}, {"name": "Gadget"}]}, False),
        ({"$nor": [{"qty": 1}]}, True),
        ({"qty": {"$type": "number"}}, True),
        ({"_id": ObjectId("5f1b2c3d4e5f6a7b8c9d0e1f")}, True),
    ],
)
def test_matches(query: dict, expected: bool) -> None:
    assert matches(DOC, query) is expected


def test_unsupported_operator_raises() -> None:
    with pytest.raises(UsageError, match=r"Unsupported query operator \$where"):
        matches(DOC, {"$where": "true"})
    with pytest.raises(UsageError):
        matches(DOC, {"qty": {"$near": 1}})


def test_apply_update_operators() -> None:
    document = {"a": 1, "list": [1, 2], "nested": {"x": 1}}

    apply_update(
        document,
        {
            "$set": {"nested.y": 2},
            "$inc": {"a": 2},
            "$push": {"list": {"$each": [3, 4]}},
            "$addToSet": {"set": 1},
            "$unset": {"nested.x": ""},
            "$rename": {"a": "b"},
        },
    )

    assert document == {"b": 3, "list": [1, 2, 3, 4], "nested": {"y": 2}, "set": [1]}

    apply_update(document, {"$pull": {"list": {"$gte": 3}}, "$max": {"b": 10}, "$min": {"c": 1}})
    assert document == {"b": 10, "list": [1, 2], "nested": {"y": 2}, "set": [1], "c": 1}

    apply_update(document, {"$setOnInsert": {"created": True}})
    assert "created" not in document


def test_project_inclusion_and_exclusion() -> None:
    assert project(DOC, {"name": 1, "owner.age": 1}) == {
        "_id": DOC["_id"],
        "name": "Widget",
        "owner": {"age": 36},
    }
    excluded = project(DOC, {"sizes": 0, "_id": 0})
    assert "sizes" not in excluded
    assert "_id" not in excluded
    with pytest.raises(UsageError):
        project(DOC, {"name": 1, "qty": 0})


def test_sort_and_distinct() -> None:
    documents = [{"k": 2, "n": "b"}, {"k": 1, "n": "z"}, {"k": 2, "n": "a"}, {"n": "none"}]

    ordered = sort_documents(documents, [("k", -1), ("n", 1)])

    assert [document["n"] for document in ordered] == ["a", "b", "z", "none"]
    assert distinct(documents, "k") == [2, 1]
    assert distinct([DOC], "tags") == ["red", "blue"]


def test_aggregate_pipeline() -> None:
    documents = [
        {"team": "a", "score": 3, "tags": ["x", "y"]},
        {"team": "b", "score": 5, "tags": ["y"]},
        {"team": "a", "score": 7, "tags": []},
    ]

    grouped = aggregate(
        documents,
        [
            {"$match": {"score": {"$gte": 3}}},
            {"$group": {"_id": "$team", "total": {"$sum": "$score"}, "best": {"$max": "$score"}}},
            {"$sort": {"total": -1}},
        ],
    )
    assert grouped == [{"_id": "a", "total": 10, "best": 7}, {"_id": "b", "total": 5, "best": 5}]

    unwound = aggregate(documents, [{"$unwind": "$tags"}, {"$count": "n"}])
    assert unwound == [{"n": 3}]

    with pytest.raises(UsageError):
        aggregate(documents, [{"$lookup": {}}])
