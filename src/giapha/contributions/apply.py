"""Apply approved contributions to the family graph.

``ApplyEngine.apply`` is the single mutating entry point for reviewed
contributions. It runs as one transaction:

1. claim the contribution (``status = approved AND applied_at IS NULL``),
2. decode the payload for its kind and run the matching handler,
3. append an APPROVE audit row.

Any failure rolls back all three, so the contribution stays unapplied and can
be retried. A lost claim is reported as ``skipped`` with no side effects. A
target person or family that no longer exists is also ``skipped``, but the
contribution is sealed so it leaves the review queue.
"""
from __future__ import annotations

from typing import Any, assert_never

import structlog
from pydantic import BaseModel, Field

from ..audit import AuditAction, AuditLog
from ..caller import Caller
from ..community import CommunityEvent, CommunityStore, EventType, Post, QuizQuestion
from ..config import CONFIG, RegistryConfig
from ..db import utc_now
from ..exceptions import (
    NotFoundOrForbidden,
    NotFoundOrSkip,
    PermissionDeniedError,
    PersistenceError,
    RegistryError,
    ValidationError,
)
from ..graph.links import LinkMaintainer, coerce_column_value
from ..graph.models import Gender, NewPerson, SpouseRole
from .models import (
    KNOWN_KINDS,
    AddEventPayload,
    AddPersonPayload,
    AddPostPayload,
    AddQuizQuestionPayload,
    Contribution,
    ContributionPayload,
    DeletePersonPayload,
    EditPersonFieldPayload,
    parse_payload,
)
from .queue import ContributionQueue

logger = structlog.get_logger(__name__)


class ApplyResult(BaseModel):
    """Outcome of one apply call; never raised, always returned."""

    model_config = {"populate_by_name": True}

    ok: bool
    skipped: bool | None = None
    inserted_id: str | None = Field(None, alias="insertedId")
    error: str | None = None
    code: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class ApplyEngine:
    """Dispatches approved contributions to their handlers."""

    def __init__(
        self,
        links: LinkMaintainer,
        queue: ContributionQueue,
        community: CommunityStore,
        audit: AuditLog,
        config: RegistryConfig | None = None,
    ) -> None:
        self.links = links
        self.queue = queue
        self.community = community
        self.audit = audit
        self.config = config or CONFIG

    @property
    def db(self):
        return self.queue.db

    def apply(self, contribution_id: str, caller: Caller) -> ApplyResult:
        log = logger.bind(contribution_id=contribution_id, actor=caller.user_id)
        if not caller.can_edit:
            log.warning("apply.permission_denied", role=caller.role.value)
            return ApplyResult(ok=False, error="Permission denied", code=PermissionDeniedError.code)

        try:
            with self.db.transaction():
                if not self.queue.claim_for_apply(contribution_id, utc_now()):
                    log.info("apply.skipped")
                    return ApplyResult(ok=True, skipped=True)

                contribution = self.queue.require(contribution_id)
                if contribution.field_name not in KNOWN_KINDS:
                    raise NotFoundOrSkip(f"Unknown contribution kind: {contribution.field_name}")
                payload = parse_payload(contribution)
                inserted_id = self._dispatch(contribution, payload, caller)

                self.audit.append(
                    actor_id=caller.user_id,
                    action=AuditAction.APPROVE,
                    entity_type="contribution",
                    entity_id=contribution.id,
                    entity_name=contribution.display_name,
                    metadata={
                        "fieldName": contribution.field_name,
                        "personHandle": contribution.person_handle,
                        "authorEmail": contribution.author_email,
                        "insertedId": inserted_id,
                    },
                )
        except NotFoundOrForbidden as exc:
            log.info("apply.target_missing", error=str(exc))
            return self._seal_without_effect(contribution_id, log)
        except NotFoundOrSkip as exc:
            log.info("apply.skipped", reason=str(exc))
            return ApplyResult(ok=True, skipped=True)
        except PermissionDeniedError as exc:
            log.warning("apply.permission_denied", error=str(exc))
            return ApplyResult(ok=False, error="Permission denied", code=exc.code)
        except PersistenceError as exc:
            log.error("apply.persistence_failed", error=str(exc))
            return ApplyResult(ok=False, error="Storage failure", code=exc.code)
        except RegistryError as exc:
            log.info("apply.rejected", error=str(exc), code=exc.code)
            return ApplyResult(ok=False, error=str(exc), code=exc.code)
        except Exception as exc:
            log.exception("apply.internal_error", error=str(exc))
            return ApplyResult(ok=False, error="Internal error", code=RegistryError.code)

        log.info("apply.applied", kind=contribution.field_name, inserted_id=inserted_id)
        return ApplyResult(ok=True, inserted_id=inserted_id)

    def _seal_without_effect(self, contribution_id: str, log) -> ApplyResult:
        """Mark a contribution whose target no longer exists as applied.

        The handler's writes were already rolled back; only ``applied_at`` is
        stamped, so later applies are skipped as well.
        """
        try:
            with self.db.transaction():
                self.queue.claim_for_apply(contribution_id, utc_now())
        except PersistenceError as exc:
            log.error("apply.persistence_failed", error=str(exc))
            return ApplyResult(ok=False, error="Storage failure", code=exc.code)
        return ApplyResult(ok=True, skipped=True)

    def _dispatch(
        self,
        contribution: Contribution,
        payload: ContributionPayload,
        caller: Caller,
    ) -> str | None:
        if isinstance(payload, AddPersonPayload):
            return self._apply_add_person(payload, caller)
        elif isinstance(payload, DeletePersonPayload):
            return self._apply_delete_person(payload, caller)
        elif isinstance(payload, EditPersonFieldPayload):
            return self._apply_edit_person_field(contribution, payload, caller)
        elif isinstance(payload, AddEventPayload):
            return self._apply_add_event(contribution, payload)
        elif isinstance(payload, AddPostPayload):
            return self._apply_add_post(contribution, payload)
        elif isinstance(payload, AddQuizQuestionPayload):
            return self._apply_add_quiz_question(payload)
        else:
            assert_never(payload)

    # =========================================================================
    # Handlers
    # =========================================================================

    def _apply_add_person(self, payload: AddPersonPayload, caller: Caller) -> str:
        spouse = None
        if payload.spouse_handle:
            spouse = self.links.store.require_person(payload.spouse_handle)

        person = self.links.create_person(
            caller,
            NewPerson(
                display_name=payload.display_name,
                gender=payload.gender,
                generation=payload.generation,
                birth_date=payload.birth_date,
                death_date=payload.death_date,
                birth_year=payload.birth_year,
                death_year=payload.death_year,
                is_living=payload.is_living,
                is_patrilineal=payload.gender is Gender.MALE,
                occupation=payload.occupation,
                current_address=payload.current_address,
                phone=payload.phone,
                email=payload.email,
            ),
        )

        if spouse is not None:
            own_role = SpouseRole.MOTHER if payload.gender is Gender.FEMALE else SpouseRole.FATHER
            family = self.links.add_family(caller)
            self.links.add_spouse_to_family(caller, person.handle, family.handle, own_role)
            self.links.add_spouse_to_family(caller, spouse.handle, family.handle, own_role.other)
            logger.info(
                "apply.spouse_family_created",
                person=person.handle,
                spouse=spouse.handle,
                family=family.handle,
            )
        return person.handle

    def _apply_delete_person(self, payload: DeletePersonPayload, caller: Caller) -> None:
        self.links.delete_person(caller, payload.handle)
        return None

    def _apply_edit_person_field(
        self,
        contribution: Contribution,
        payload: EditPersonFieldPayload,
        caller: Caller,
    ) -> None:
        handle = (contribution.person_handle or "").strip()
        if not handle:
            raise ValidationError("Contribution does not name the person to edit", field="person_handle")
        value = coerce_column_value(payload.db_column, payload.value)
        self.links.update_person_fields(caller, handle, {payload.db_column: value})
        return None

    def _apply_add_event(self, contribution: Contribution, payload: AddEventPayload) -> str:
        event = self.community.add_event(
            CommunityEvent(
                title=payload.title,
                description=payload.description,
                start_at=payload.start_at,
                location=payload.location,
                type=EventType.normalize(payload.type),
                creator_id=contribution.reviewed_by,
            )
        )
        return str(event.id)

    def _apply_add_post(self, contribution: Contribution, payload: AddPostPayload) -> str:
        limit = self.config.post_max_length
        if len(payload.body) > limit:
            raise ValidationError(f"body exceeds {limit} characters", field="body")
        post = self.community.add_post(
            Post(author_id=contribution.author_id, title=payload.title, body=payload.body)
        )
        return str(post.id)

    def _apply_add_quiz_question(self, payload: AddQuizQuestionPayload) -> str:
        question = self.community.add_question(
            QuizQuestion(
                question=payload.question,
                correct_answer=payload.correct_answer,
                hint=payload.hint,
            )
        )
        return str(question.id)
