from __future__ import annotations

import json

import pytest

from giapha.caller import Caller
from giapha.contributions import (
    AddEventPayload,
    AddPersonPayload,
    Contribution,
    ContributionStatus,
    DeletePersonPayload,
    EditPersonFieldPayload,
    parse_payload,
)
from giapha.exceptions import ValidationError
from giapha.graph import Gender
from giapha.registry import FamilyRegistry


def test_submit_creates_pending(registry: FamilyRegistry, member: Caller):
    c = registry.submit(
        member,
        "add_person",
        json.dumps({"displayName": "Phạm Văn A", "generation": 3}),
        note="con út",
    )

    stored = registry.queue.get(c.id)
    assert stored.status is ContributionStatus.PENDING
    assert stored.author_id == member.user_id
    assert stored.author_email == member.email
    assert stored.applied_at is None
    assert stored.note == "con út"


def test_submit_rejects_empty_value(registry: FamilyRegistry, member: Caller):
    with pytest.raises(ValidationError):
        registry.submit(member, "add_post", "   ")
    assert registry.queue.list() == []


def test_submit_accepts_unknown_kind_and_apply_skips_it(registry: FamilyRegistry, member: Caller, admin: Caller):
    c = registry.submit(member, "upload_photo", '{"url": "x"}')
    registry.review.approve(c.id, admin)

    assert registry.apply(c.id, admin).to_dict() == {"ok": True, "skipped": True}
    assert registry.queue.get(c.id).applied_at is None


def test_submit_does_not_validate_payload_schema(registry: FamilyRegistry, member: Caller):
    c = registry.submit(member, "add_event", "not json at all")
    assert registry.queue.get(c.id).new_value == "not json at all"


def test_list_filters(registry: FamilyRegistry, member: Caller, editor: Caller, admin: Caller):
    a = registry.submit(member, "add_post", json.dumps({"body": "one"}))
    registry.submit(editor, "add_post", json.dumps({"body": "two"}))
    registry.review.reject(a.id, admin)

    assert len(registry.queue.list()) == 2
    assert [c.id for c in registry.queue.list(status="rejected")] == [a.id]
    assert len(registry.queue.list(author_id=editor.user_id)) == 1
    assert len(registry.queue.list(limit=1)) == 1


def test_claim_for_apply_wins_once(registry: FamilyRegistry, member: Caller, admin: Caller):
    c = registry.submit(member, "add_post", json.dumps({"body": "hello"}))

    assert registry.queue.claim_for_apply(c.id) is False  # still pending

    registry.review.approve(c.id, admin)
    assert registry.queue.claim_for_apply(c.id) is True
    assert registry.queue.claim_for_apply(c.id) is False
    assert registry.queue.get(c.id).applied_at is not None


def test_claim_unknown_id(registry: FamilyRegistry):
    assert registry.queue.claim_for_apply("nope") is False


def _contribution(kind: str, new_value: str, **kw) -> Contribution:
    return Contribution(author_id="u", field_name=kind, new_value=new_value, **kw)


def test_parse_add_person_defaults():
    payload = parse_payload(_contribution("add_person", json.dumps({"displayName": "Phạm Văn A", "generation": 3})))

    assert isinstance(payload, AddPersonPayload)
    assert payload.display_name == "Phạm Văn A"
    assert payload.gender is Gender.MALE
    assert payload.is_living is True
    assert payload.spouse_handle is None


def test_parse_add_person_legacy_gender_code():
    payload = parse_payload(
        _contribution("add_person", json.dumps({"displayName": "Lê Thị B", "generation": 2, "gender": 2, "birthYear": 0}))
    )
    assert payload.gender is Gender.FEMALE
    assert payload.birth_year is None


@pytest.mark.parametrize(
    ("payload", "field"),
    [
        ({"generation": 3}, "displayName"),
        ({"displayName": "   ", "generation": 3}, "displayName"),
        ({"displayName": "A", "generation": 0}, "generation"),
        ({"displayName": "A"}, "generation"),
    ],
)
def test_parse_add_person_errors_name_the_field(payload, field):
    with pytest.raises(ValidationError) as excinfo:
        parse_payload(_contribution("add_person", json.dumps(payload)))
    assert excinfo.value.field == field
    assert field in str(excinfo.value)


def test_parse_rejects_malformed_json():
    with pytest.raises(ValidationError) as excinfo:
        parse_payload(_contribution("add_event", "{oops"))
    assert excinfo.value.field == "new_value"

    with pytest.raises(ValidationError):
        parse_payload(_contribution("add_event", json.dumps(["a", "list"])))


def test_parse_edit_person_field():
    payload = parse_payload(
        _contribution("edit_person_field", json.dumps({"dbColumn": "occupation", "label": "Nghề", "value": "Kỹ sư"}))
    )
    assert isinstance(payload, EditPersonFieldPayload)
    assert payload.db_column == "occupation"
    assert payload.value == "Kỹ sư"


def test_parse_delete_person_target():
    from_context = parse_payload(_contribution("delete_person", "ignored", person_handle="P004"))
    from_value = parse_payload(_contribution("delete_person", "P007"))
    from_json = parse_payload(_contribution("delete_person", json.dumps({"handle": "P008"})))

    assert isinstance(from_context, DeletePersonPayload)
    assert from_context.handle == "P004"
    assert from_value.handle == "P007"
    assert from_json.handle == "P008"


def test_parse_event_start_at():
    payload = parse_payload(
        _contribution("add_event", json.dumps({"title": "Giỗ tổ", "startAt": "2026-04-10T08:00:00Z", "type": "memorial"}))
    )
    assert isinstance(payload, AddEventPayload)
    assert payload.start_at.year == 2026
    assert payload.start_at.utcoffset() is not None

    with pytest.raises(ValidationError) as excinfo:
        parse_payload(_contribution("add_event", json.dumps({"title": "Họp họ", "startAt": "mùng 10"})))
    assert excinfo.value.field == "startAt"


def test_parse_unknown_kind():
    with pytest.raises(ValueError):
        parse_payload(_contribution("change_password", "{}"))
