from __future__ import annotations

import pytest

from constituency_desk.errors import Conflict, ValidationFailed
from constituency_desk.models.visitor import Visitor
from constituency_desk.services import visitor_registry


def _new(**kw) -> dict:
    data = {
        "name": "Meera Jadhav",
        "phone": "9811111111",
        "village": "Panchgani",
        "district": "Satara",
    }
    data.update(kw)
    return data


def test_duplicate_identity_is_rejected(session):
    visitor_registry.register(session, _new(aadhaar="123412341234", voter_id="MH/01/123"))

    with pytest.raises(Conflict):
        visitor_registry.register(session, _new(name="Other", phone="9822222222", aadhaar="123412341234"))
    with pytest.raises(Conflict):
        visitor_registry.register(session, _new(name="Other", phone="9822222222", voter_id="MH/01/123"))
    with pytest.raises(Conflict):
        visitor_registry.register(session, _new(name="Other"))


def test_update_checks_other_visitors_only(session):
    a = visitor_registry.register(session, _new())
    b = visitor_registry.register(session, _new(name="Second", phone="9833333333"))

    # Re-saving your own phone is not a duplicate.
    same = visitor_registry.update(session, a.id, {"phone": "9811111111", "notes": "Regular"})
    assert same.notes == "Regular"

    with pytest.raises(Conflict, match="Another visitor"):
        visitor_registry.update(session, b.id, {"phone": "9811111111"})


def test_update_refuses_to_clear_required_fields(session):
    visitor = visitor_registry.register(session, _new(occupation="Teacher"))

    with pytest.raises(ValidationFailed) as excinfo:
        visitor_registry.update(session, visitor.id, {"name": None, "village": None, "notes": "x"})
    assert [d["field"] for d in excinfo.value.details] == ["name", "village"]

    session.refresh(visitor)
    assert visitor.name == "Meera Jadhav"
    assert visitor.notes is None

    cleared = visitor_registry.update(session, visitor.id, {"occupation": None})
    assert cleared.occupation is None


def test_soft_delete_hides_but_keeps_record(session, make_visitor):
    visitor = make_visitor(name="Sunil Pawar")
    visitor_registry.soft_delete(session, visitor.id)

    assert session.get(Visitor, visitor.id).is_active is False
    assert visitor_registry.search(session, "Sunil").visitors == []
    assert visitor_registry.list_visitors(session).total == 0
    assert visitor_registry.get_with_recent(session, visitor.id).visitor.id == visitor.id

    # Soft-deleted identities still block re-registration.
    with pytest.raises(Conflict):
        visitor_registry.register(session, _new(phone=visitor.phone))


def test_search_needs_two_characters(session, make_visitor):
    make_visitor(name="Anil")
    short = visitor_registry.search(session, "A")
    assert short.visitors == []
    assert short.message == "Query must be at least 2 characters long"

    assert [v.name for v in visitor_registry.search(session, "an").visitors] == ["Anil"]


def test_visitor_api(client, auth, users):
    created = client.post("/visitors", json=_new(category="STUDENT", age=22), headers=auth())
    assert created.status_code == 201
    visitor = created.json()["visitor"]
    assert visitor["visit_count"] == 0

    dup = client.post("/visitors", json=_new(), headers=auth())
    assert dup.status_code == 409
    assert dup.json() == {"error": "Visitor with this phone, Aadhaar, or Voter ID already exists"}

    bad = client.post("/visitors", json=_new(phone="123"), headers=auth())
    assert bad.status_code == 400
    assert bad.json()["error"] == "Validation failed"
    assert any(d["field"] == "phone" for d in bad.json()["details"])

    page = client.get("/visitors?category=STUDENT", headers=auth("viewer")).json()
    assert page["pagination"] == {"page": 1, "limit": 10, "total": 1, "pages": 1}

    found = client.get("/visitors/search?q=Meera", headers=auth()).json()
    assert found["count"] == 1

    client.post(
        "/visits",
        json={"visitor_id": visitor["id"], "user_id": users["staff"].id},
        headers=auth(),
    )
    detail = client.get(f"/visitors/{visitor['id']}", headers=auth()).json()["visitor"]
    assert detail["visit_count"] == 1
    assert len(detail["visits"]) == 1

    history = client.get(f"/visitors/{visitor['id']}/history", headers=auth()).json()
    assert history["history"]["visits"][0]["status"] == "IN_PROGRESS"

    assert client.delete(f"/visitors/{visitor['id']}", headers=auth()).status_code == 403
    assert client.delete(f"/visitors/{visitor['id']}", headers=auth("politician")).status_code == 200
    assert client.get("/visitors", headers=auth()).json()["pagination"]["total"] == 0


def test_visitor_put_with_null_name_is_a_validation_error(client, auth):
    visitor = client.post("/visitors", json=_new(), headers=auth()).json()["visitor"]

    res = client.put(f"/visitors/{visitor['id']}", json={"name": None}, headers=auth())
    assert res.status_code == 400
    assert res.json()["details"] == [{"field": "name", "message": "name cannot be null"}]
    assert client.get(f"/visitors/{visitor['id']}", headers=auth()).json()["visitor"]["name"] == "Meera Jadhav"
