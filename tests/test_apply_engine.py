from __future__ import annotations

import json
from concurrent.futures import ThreadPoolExecutor

import pytest

from giapha.audit import AuditAction
from giapha.caller import Caller
from giapha.community import EventType
from giapha.contributions import ApplyResult
from giapha.exceptions import PersistenceError
from giapha.graph import Gender
from giapha.registry import FamilyRegistry


def _approve_count(registry: FamilyRegistry) -> int:
    return len(registry.audit.list(action=AuditAction.APPROVE))


# ---------------------- add_person ----------------------

def test_add_person_then_reapply_is_skipped(seeded: FamilyRegistry, admin: Caller, member: Caller, make_approved):
    cid = make_approved("add_person", {"displayName": "Phạm Văn A", "generation": 3})

    first = seeded.apply(cid, admin)

    assert first.to_dict() == {"ok": True, "insertedId": "P007"}
    person = seeded.get_person("P007")
    assert person.display_name == "Phạm Văn A"
    assert person.generation == 3
    assert person.is_living is True
    assert person.gender is Gender.MALE
    assert person.is_patrilineal is True
    assert seeded.queue.get(cid).applied_at is not None

    audit_before = seeded.audit.count()
    second = seeded.apply(cid, admin)

    assert second.to_dict() == {"ok": True, "skipped": True}
    assert len(seeded.list_people()) == 7
    assert seeded.audit.count() == audit_before
    assert seeded.check() == []


def test_apply_writes_one_approve_entry(seeded: FamilyRegistry, editor: Caller, member: Caller, make_approved):
    cid = make_approved("add_person", {"displayName": "Phạm Văn A", "generation": 3})

    seeded.apply(cid, editor)

    entries = seeded.audit.list(entity_id=cid)
    assert len(entries) == 1
    entry = entries[0]
    assert entry.action is AuditAction.APPROVE
    assert entry.actor_id == editor.user_id
    assert entry.entity_type == "contribution"
    assert entry.entity_name == "add_person"
    assert entry.metadata == {
        "fieldName": "add_person",
        "authorEmail": member.email,
        "insertedId": "P007",
    }


def test_add_person_female_with_spouse(seeded: FamilyRegistry, admin: Caller, make_approved):
    cid = make_approved(
        "add_person",
        {"displayName": "Hoàng Thị Lan", "generation": 2, "gender": 2, "spouseHandle": "P005", "isLiving": False},
    )

    result = seeded.apply(cid, admin)

    assert result.ok and result.inserted_id == "P007"
    family = seeded.get_family("F003")
    assert family.father_handle == "P005"
    assert family.mother_handle == "P007"
    assert family.children == []
    new = seeded.get_person("P007")
    assert new.families == ["F003"]
    assert new.is_patrilineal is False
    assert new.is_living is False
    assert seeded.get_person("P005").families == ["F003"]
    assert seeded.check() == []


def test_add_person_male_with_spouse_takes_father_role(seeded: FamilyRegistry, admin: Caller, make_approved):
    cid = make_approved("add_person", {"displayName": "Đỗ Văn Minh", "generation": 2, "gender": 1, "spouseHandle": "P004"})

    seeded.apply(cid, admin)

    family = seeded.get_family("F003")
    assert family.father_handle == "P007"
    assert family.mother_handle == "P004"
    assert seeded.check() == []


def test_add_person_missing_spouse_creates_nothing(seeded: FamilyRegistry, admin: Caller, make_approved):
    cid = make_approved("add_person", {"displayName": "X", "generation": 2, "spouseHandle": "P999"})

    result = seeded.apply(cid, admin)

    assert result.to_dict() == {"ok": True, "skipped": True}
    assert len(seeded.list_people()) == 6
    assert len(seeded.list_families()) == 2
    assert seeded.queue.get(cid).applied_at is not None
    assert _approve_count(seeded) == 0


def test_add_person_validation_error(seeded: FamilyRegistry, admin: Caller, make_approved):
    cid = make_approved("add_person", {"displayName": "  ", "generation": 3})

    result = seeded.apply(cid, admin)

    assert result.to_dict()["ok"] is False
    assert result.code == "validation"
    assert "displayName" in result.error
    assert seeded.queue.get(cid).applied_at is None


# ---------------------- delete_person ----------------------

def test_delete_person_blocked_by_one_family(seeded: FamilyRegistry, admin: Caller, make_approved):
    child = seeded.create_person(admin, {"display_name": "Nguyễn Văn Khoa", "generation": 3})
    for _ in range(7):
        seeded.add_family(admin)
    f010 = seeded.add_family(admin, father_handle="P003", children=[child.handle])
    assert f010.handle == "F010"

    cid = make_approved("delete_person", child.handle, person_handle=child.handle, person_name=child.display_name)
    result = seeded.apply(cid, admin)

    assert result.ok is False
    assert result.code == "integrity"
    assert "1 family" in result.error
    assert "F010" in result.error
    assert seeded.get_person(child.handle).parent_families == ["F010"]
    assert seeded.queue.get(cid).applied_at is None
    assert _approve_count(seeded) == 0


def test_failed_delete_can_be_retried_after_unlinking(seeded: FamilyRegistry, admin: Caller, make_approved):
    cid = make_approved("delete_person", "P004", person_handle="P004")
    assert seeded.apply(cid, admin).code == "integrity"

    seeded.remove_child_from_family(admin, "P004", "F001")
    result = seeded.apply(cid, admin)

    assert result.to_dict() == {"ok": True}
    assert seeded.get_person("P004") is None
    assert seeded.check() == []


def test_delete_missing_person_is_a_sealed_no_op(seeded: FamilyRegistry, admin: Caller, make_approved):
    cid = make_approved("delete_person", "P404")

    result = seeded.apply(cid, admin)

    assert result.to_dict() == {"ok": True, "skipped": True}
    assert seeded.queue.get(cid).applied_at is not None
    assert len(seeded.list_people()) == 6
    assert _approve_count(seeded) == 0
    assert seeded.apply(cid, admin).to_dict() == {"ok": True, "skipped": True}


def test_delete_of_already_deleted_person_completes(seeded: FamilyRegistry, admin: Caller, make_approved):
    seeded.remove_child_from_family(admin, "P004", "F001")
    cid = make_approved("delete_person", "P004", person_handle="P004")
    seeded.delete_person(admin, "P004")

    assert seeded.apply(cid, admin).skipped is True
    assert seeded.queue.get(cid).is_applied
    assert seeded.check() == []


# ---------------------- edit_person_field ----------------------

def test_edit_field_outside_allow_list_writes_nothing(seeded: FamilyRegistry, admin: Caller, make_approved):
    before = seeded.get_person("P001")
    audit_before = seeded.audit.count()
    cid = make_approved("edit_person_field", {"dbColumn": "password", "value": "hunter2"}, person_handle="P001")

    result = seeded.apply(cid, admin)

    assert result.ok is False
    assert result.code == "validation"
    assert "password" in result.error
    assert seeded.get_person("P001") == before
    assert seeded.queue.get(cid).applied_at is None
    assert seeded.audit.count() == audit_before


@pytest.mark.parametrize(
    ("column", "value", "attr", "expected"),
    [
        ("occupation", "Kỹ sư", "occupation", "Kỹ sư"),
        ("is_living", "false", "is_living", False),
        ("is_living", "TRUE", "is_living", True),
        ("birth_year", "1950", "birth_year", 1950),
        ("birth_date", "1951-02-03", "birth_year", 1951),
        ("display_name", "Nguyễn Văn Ân", "display_name", "Nguyễn Văn Ân"),
    ],
)
def test_edit_field_coerces_by_column(seeded: FamilyRegistry, admin: Caller, make_approved, column, value, attr, expected):
    cid = make_approved("edit_person_field", {"dbColumn": column, "label": column, "value": value}, person_handle="P001")

    result = seeded.apply(cid, admin)

    assert result.ok is True, result.error
    assert getattr(seeded.get_person("P001"), attr) == expected


@pytest.mark.parametrize(
    ("column", "value"),
    [
        ("birth_year", "một chín năm mươi"),
        ("is_living", "có lẽ"),
        ("birth_date", "03/02/1951"),
        ("display_name", ""),
    ],
)
def test_edit_field_bad_values(seeded: FamilyRegistry, admin: Caller, make_approved, column, value):
    cid = make_approved("edit_person_field", {"dbColumn": column, "value": value}, person_handle="P001")

    result = seeded.apply(cid, admin)

    assert result.ok is False
    assert result.code == "validation"
    assert column in result.error


def test_edit_field_requires_person_handle(seeded: FamilyRegistry, admin: Caller, make_approved):
    cid = make_approved("edit_person_field", {"dbColumn": "occupation", "value": "x"})

    result = seeded.apply(cid, admin)

    assert result.code == "validation"


def test_edit_field_on_missing_person(seeded: FamilyRegistry, admin: Caller, make_approved):
    cid = make_approved("edit_person_field", {"dbColumn": "occupation", "value": "x"}, person_handle="P404")

    result = seeded.apply(cid, admin)

    assert result.to_dict() == {"ok": True, "skipped": True}
    assert seeded.queue.get(cid).applied_at is not None
    assert _approve_count(seeded) == 0


# ---------------------- community kinds ----------------------

def test_add_event(seeded: FamilyRegistry, admin: Caller, make_approved):
    cid = make_approved(
        "add_event",
        {"title": "Giỗ tổ", "startAt": "2026-04-10T08:00:00+07:00", "type": "memorial", "location": " Nhà thờ họ "},
    )

    result = seeded.apply(cid, admin)

    assert result.to_dict() == {"ok": True, "insertedId": "1"}
    event = seeded.community.get_event(1)
    assert event.title == "Giỗ tổ"
    assert event.type is EventType.MEMORIAL
    assert event.location == "Nhà thờ họ"
    assert event.creator_id == admin.user_id


def test_add_event_unknown_type_becomes_other(seeded: FamilyRegistry, admin: Caller, make_approved):
    cid = make_approved("add_event", {"title": "Dã ngoại", "startAt": "2026-07-01", "type": "picnic"})

    seeded.apply(cid, admin)

    assert seeded.community.get_event(1).type is EventType.OTHER


def test_add_event_bad_start(seeded: FamilyRegistry, admin: Caller, make_approved):
    cid = make_approved("add_event", {"title": "Họp họ", "startAt": "sáng mai"})

    result = seeded.apply(cid, admin)

    assert result.code == "validation"
    assert seeded.community.count("events") == 0


def test_add_post(seeded: FamilyRegistry, admin: Caller, member: Caller, make_approved):
    cid = make_approved("add_post", {"title": "Thông báo", "body": "  Họp mặt đầu xuân  "})

    result = seeded.apply(cid, admin)

    post = seeded.community.get_post(result.inserted_id)
    assert post.body == "Họp mặt đầu xuân"
    assert post.author_id == member.user_id
    assert post.type == "general"
    assert post.status == "published"


def test_add_post_too_long(seeded: FamilyRegistry, admin: Caller, make_approved):
    cid = make_approved("add_post", {"body": "x" * 10_001})

    result = seeded.apply(cid, admin)

    assert result.code == "validation"
    assert "10000" in result.error
    assert seeded.community.count("posts") == 0


def test_add_quiz_question(seeded: FamilyRegistry, admin: Caller, make_approved):
    cid = make_approved("add_quiz_question", {"question": "Cụ tổ đời 1 tên gì?", "correctAnswer": "An", "hint": ""})

    result = seeded.apply(cid, admin)

    question = seeded.community.get_question(result.inserted_id)
    assert question.correct_answer == "An"
    assert question.hint is None
    assert question.is_active is True


def test_add_quiz_question_requires_answer(seeded: FamilyRegistry, admin: Caller, make_approved):
    cid = make_approved("add_quiz_question", {"question": "Ai?"})

    result = seeded.apply(cid, admin)

    assert result.code == "validation"
    assert "correctAnswer" in result.error


# ---------------------- dispatcher boundary ----------------------

def test_member_cannot_apply(seeded: FamilyRegistry, member: Caller, make_approved):
    cid = make_approved("add_person", {"displayName": "A", "generation": 3})

    result = seeded.apply(cid, member)

    assert result.to_dict() == {"ok": False, "error": "Permission denied", "code": "permission"}
    assert seeded.queue.get(cid).applied_at is None
    assert len(seeded.list_people()) == 6


def test_pending_and_unknown_contributions_are_skipped(seeded: FamilyRegistry, admin: Caller, member: Caller):
    pending = seeded.submit(member, "add_person", json.dumps({"displayName": "A", "generation": 3}))

    assert seeded.apply(pending.id, admin).to_dict() == {"ok": True, "skipped": True}
    assert seeded.apply("does-not-exist", admin).skipped is True
    assert len(seeded.list_people()) == 6


def test_rejected_contribution_is_skipped(seeded: FamilyRegistry, admin: Caller, member: Caller):
    c = seeded.submit(member, "add_person", json.dumps({"displayName": "A", "generation": 3}))
    seeded.review.reject(c.id, admin)

    assert seeded.apply(c.id, admin).skipped is True
    assert len(seeded.list_people()) == 6


def test_unknown_kind_is_skipped_and_left_unsealed(seeded: FamilyRegistry, admin: Caller):
    with seeded.db.transaction() as cursor:
        cursor.execute(
            """
            INSERT INTO contributions (id, author_id, field_name, new_value, status, created_at)
            VALUES ('legacy-1', 'u-old', 'upload_photo', '{}', 'approved', '2024-01-01T00:00:00+00:00')
            """
        )

    result = seeded.apply("legacy-1", admin)

    assert result.to_dict() == {"ok": True, "skipped": True}
    assert seeded.queue.get("legacy-1").applied_at is None


def test_unexpected_exception_maps_to_internal(seeded: FamilyRegistry, admin: Caller, make_approved, monkeypatch):
    def boom(post):
        raise RuntimeError("kaboom")

    monkeypatch.setattr(seeded.community, "add_post", boom)
    cid = make_approved("add_post", {"body": "hello"})

    result = seeded.apply(cid, admin)

    assert result.to_dict() == {"ok": False, "error": "Internal error", "code": "internal"}
    assert seeded.queue.get(cid).applied_at is None


def test_persistence_error_is_opaque(seeded: FamilyRegistry, admin: Caller, make_approved, monkeypatch):
    def fail(question):
        raise PersistenceError("disk I/O error at /var/lib/giapha.db")

    monkeypatch.setattr(seeded.community, "add_question", fail)
    cid = make_approved("add_quiz_question", {"question": "Q?", "correctAnswer": "A"})

    result = seeded.apply(cid, admin)

    assert result.code == "persistence"
    assert "giapha.db" not in result.error
    assert seeded.queue.get(cid).applied_at is None


def test_approve_and_apply(seeded: FamilyRegistry, admin: Caller, member: Caller):
    c = seeded.submit(member, "add_person", json.dumps({"displayName": "Phạm Văn A", "generation": 3}))

    result = seeded.approve_and_apply(c.id, admin, "ok")

    assert isinstance(result, ApplyResult)
    assert result.inserted_id == "P007"
    stored = seeded.queue.get(c.id)
    assert stored.status.value == "approved"
    assert stored.applied_at is not None


def test_concurrent_applies_effect_once(seeded: FamilyRegistry, admin: Caller, make_approved):
    cid = make_approved("add_person", {"displayName": "Phạm Văn A", "generation": 3})

    with ThreadPoolExecutor(max_workers=8) as pool:
        results = list(pool.map(lambda _: seeded.apply(cid, admin), range(8)))

    applied = [r for r in results if r.ok and not r.skipped]
    assert len(applied) == 1
    assert all(r.ok for r in results)
    assert len(seeded.list_people()) == 7
    assert _approve_count(seeded) == 1
