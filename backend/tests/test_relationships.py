import copy

from sqlalchemy import select

from practice.models import Client
from practice.services.relationships import (
    apply_relationship_fixes, fix_relationship_types, reciprocal_type,
)


def by_id(results):
    return {r.id: r for r in results}


def test_reciprocal_lookup():
    assert reciprocal_type("Mum") == "Daughter"
    assert reciprocal_type("Husband") == "Wife"
    assert reciprocal_type("Cousin") == "Cousin"
    assert reciprocal_type(None) is None


def test_consistent_pair_is_untouched():
    clients = [
        {"id": "a", "relationships": [{"relatedClientId": "b", "type": "Mother"}]},
        {"id": "b", "relationships": [{"relatedClientId": "a", "type": "Daughter"}]},
    ]
    results = by_id(fix_relationship_types(clients))
    assert not results["a"].changed
    assert not results["b"].changed
    assert results["a"].relationships == [{"relatedClientId": "b", "type": "Mother"}]


def test_mismatched_entry_takes_reciprocal_of_other_side():
    clients = [
        {"id": "a", "relationships": [{"relatedClientId": "b", "type": "Friend"}]},
        {"id": "b", "relationships": [{"relatedClientId": "a", "type": "Wife"}]},
    ]
    results = by_id(fix_relationship_types(clients))
    assert results["a"].changed
    assert results["a"].relationships == [{"relatedClientId": "b", "type": "Husband"}]
    assert results["b"].relationships == [{"relatedClientId": "a", "type": "Friend"}]


def test_entries_without_counterpart_are_kept():
    clients = [
        {"id": "a", "relationships": [
            {"relatedClientId": "missing", "type": "Dad"},
            {"relatedClientId": "b", "type": "Sister"},
        ]},
        {"id": "b", "relationships": []},
        {"id": "c", "relationships": None},
    ]
    results = by_id(fix_relationship_types(clients))
    assert not any(r.changed for r in results.values())
    assert results["a"].relationships == clients[0]["relationships"]
    assert results["c"].relationships == []


def test_result_does_not_depend_on_order():
    clients = [
        {"id": "a", "relationships": [{"relatedClientId": "b", "type": "Friend"}]},
        {"id": "b", "relationships": [
            {"relatedClientId": "a", "type": "Wife"},
            {"relatedClientId": "c", "type": "Son"},
        ]},
        {"id": "c", "relationships": [{"relatedClientId": "b", "type": "Mum"}]},
    ]
    forward = {r.id: r.relationships for r in fix_relationship_types(clients)}
    backward = {r.id: r.relationships for r in fix_relationship_types(list(reversed(clients)))}
    assert forward == backward


def test_inputs_are_not_mutated():
    clients = [
        {"id": "a", "relationships": [{"relatedClientId": "b", "type": "Friend"}]},
        {"id": "b", "relationships": [{"relatedClientId": "a", "type": "Wife"}]},
    ]
    before = copy.deepcopy(clients)
    fix_relationship_types(clients)
    assert clients == before


def test_unknown_types_map_to_themselves():
    clients = [
        {"id": "a", "relationships": [{"relatedClientId": "b", "type": "Cousin"}]},
        {"id": "b", "relationships": [{"relatedClientId": "a", "type": "Cousin"}]},
    ]
    results = by_id(fix_relationship_types(clients))
    assert not results["a"].changed
    assert results["a"].relationships[0]["type"] == "Cousin"


async def test_apply_relationship_fixes_updates_changed_rows(db, user):
    db.add_all([
        Client(id="a", user_id=user.id, name="A",
               relationships=[{"relatedClientId": "b", "type": "Friend"}]),
        Client(id="b", user_id=user.id, name="B", archived=True,
               relationships=[{"relatedClientId": "a", "type": "Husband"}]),
        Client(id="c", user_id=user.id, name="C", relationships=None),
        Client(id="z", user_id=None, name="Z", relationships=[{"relatedClientId": "a", "type": "Dad"}]),
    ])
    await db.commit()

    processed, changed = await apply_relationship_fixes(db, user.id)

    assert processed == 3
    assert changed == 2
    res = await db.execute(select(Client.id, Client.relationships).order_by(Client.id))
    rows = {r.id: r.relationships for r in res.all()}
    assert rows["a"] == [{"relatedClientId": "b", "type": "Wife"}]
    assert rows["b"] == [{"relatedClientId": "a", "type": "Friend"}]
    assert rows["z"] == [{"relatedClientId": "a", "type": "Dad"}]
