from unittest.mock import AsyncMock
from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm.exc import StaleDataError

from app.core.exceptions import (
    AlreadyInitializedError,
    ConcurrentModificationError,
    InvalidStepTransitionError,
    PillarNotFoundError,
    RetryLimitExceededError,
    StepNotFoundError,
    UserNotFoundError,
    ValidationError,
)
from app.database.models import VerificationPillar, VerificationStep
from app.models.verification import PillarKind, StepStatus
from app.services.verification.collaborators import EmailVerificationOracle
from app.services.verification.engine import EMAIL_FAST_PATH_MESSAGE


def _oracle(verified: bool) -> AsyncMock:
    oracle = AsyncMock(spec=EmailVerificationOracle)
    oracle.is_email_verified.return_value = verified
    return oracle


def _pillar(center, kind: PillarKind):
    return next(p for p in center.pillars if p.pillar_name == kind)


def _step(center, kind: PillarKind, name: str):
    return next(s for s in _pillar(center, kind).steps if s.step_name == name)


async def _count(db_session, model, user_id) -> int:
    result = await db_session.execute(select(func.count()).select_from(model).where(model.user_id == user_id))
    return result.scalar_one()


@pytest.mark.asyncio
async def test_initialize_creates_pillars_and_steps(make_engine, create_user):
    user_id = await create_user()
    engine = make_engine(email_oracle=_oracle(False))

    center = await engine.initialize_for_user(user_id)

    assert center.initialized
    assert len(center.pillars) == 4
    assert [p.weight_percentage for p in center.pillars] == [25, 25, 25, 25]
    assert [len(p.steps) for p in center.pillars] == [3, 2, 3, 3]
    assert center.overall_percentage == 0
    assert center.fully_verified is False
    for pillar in center.pillars:
        assert pillar.status == "not_verified"
        assert [s.step_order for s in pillar.steps] == list(range(1, len(pillar.steps) + 1))
        for step in pillar.steps:
            assert step.status == StepStatus.NOT_VERIFIED
            assert step.retry_count == 0
            assert step.max_retries == 3
            assert step.metadata == {"catalog_version": "v1"}
            assert step.requirement_checklist


@pytest.mark.asyncio
async def test_email_fast_path_verifies_contact_step(make_engine, create_user):
    user_id = await create_user(email_verified=True)
    engine = make_engine()

    center = await engine.initialize_for_user(user_id)

    contact = _step(center, PillarKind.PERSONAL_INFO, "Contact Verification")
    assert contact.status == StepStatus.VERIFIED
    assert contact.status_message == EMAIL_FAST_PATH_MESSAGE
    assert contact.verified_at is not None
    personal = _pillar(center, PillarKind.PERSONAL_INFO)
    assert personal.completion_percentage == 33
    assert personal.status == "in_progress"
    assert center.overall_percentage == 8
    assert center.fully_verified is False


@pytest.mark.asyncio
async def test_email_oracle_consulted_once(make_engine, create_user):
    user_id = await create_user()
    oracle = _oracle(False)

    center = await make_engine(email_oracle=oracle).initialize_for_user(user_id)

    oracle.is_email_verified.assert_awaited_once_with(user_id)
    assert _step(center, PillarKind.PERSONAL_INFO, "Contact Verification").status == StepStatus.NOT_VERIFIED


@pytest.mark.asyncio
async def test_initialize_twice_is_rejected(make_engine, create_user, db_session):
    user_id = await create_user()
    engine = make_engine(email_oracle=_oracle(False))
    await engine.initialize_for_user(user_id)

    with pytest.raises(AlreadyInitializedError):
        await engine.initialize_for_user(user_id)

    assert await _count(db_session, VerificationPillar, user_id) == 4
    assert await _count(db_session, VerificationStep, user_id) == 11


@pytest.mark.asyncio
async def test_failed_initialization_rolls_back(make_engine, create_user, db_session):
    user_id = await create_user()
    oracle = AsyncMock(spec=EmailVerificationOracle)
    oracle.is_email_verified.side_effect = RuntimeError("identity service down")
    engine = make_engine(email_oracle=oracle)

    with pytest.raises(RuntimeError):
        await engine.initialize_for_user(user_id)

    assert await _count(db_session, VerificationPillar, user_id) == 0

    oracle.is_email_verified.side_effect = None
    oracle.is_email_verified.return_value = False
    center = await engine.initialize_for_user(user_id)
    assert len(center.pillars) == 4


@pytest.mark.asyncio
async def test_get_center_before_initialization(make_engine):
    center = await make_engine().get_center(uuid4())

    assert center.initialized is False
    assert center.overall_percentage == 0
    assert center.fully_verified is False
    assert center.pillars == []


@pytest.mark.asyncio
async def test_verifying_a_whole_pillar(make_engine, create_user, clock):
    user_id = await create_user()
    engine = make_engine(email_oracle=_oracle(False))
    center = await engine.initialize_for_user(user_id)

    expected = [33, 67, 100]
    for step, completion in zip(_pillar(center, PillarKind.PERSONAL_INFO).steps, expected):
        clock.advance(minutes=1)
        updated = await engine.update_step_status(step.id, StepStatus.VERIFIED, status_message="ok")
        assert updated.verified_at is not None
        assert updated.last_attempted_at is not None
        pillar = await engine.get_pillar(user_id, PillarKind.PERSONAL_INFO)
        assert pillar.completion_percentage == completion

    center = await engine.get_center(user_id)
    personal = _pillar(center, PillarKind.PERSONAL_INFO)
    assert personal.status == "verified"
    assert personal.completion_percentage == 100
    assert center.overall_percentage == 25
    assert center.fully_verified is False


@pytest.mark.asyncio
async def test_fully_verified_after_every_step(make_engine, create_user):
    user_id = await create_user()
    engine = make_engine(email_oracle=_oracle(False))
    center = await engine.initialize_for_user(user_id)

    for pillar in center.pillars:
        for step in pillar.steps:
            await engine.update_step_status(step.id, "verified")

    center = await engine.get_center(user_id)
    assert center.overall_percentage == 100
    assert center.fully_verified is True
    assert all(p.status == "verified" for p in center.pillars)


@pytest.mark.asyncio
async def test_failed_step_marks_pillar_in_progress(make_engine, create_user):
    user_id = await create_user()
    engine = make_engine(email_oracle=_oracle(False))
    center = await engine.initialize_for_user(user_id)
    step = _step(center, PillarKind.DOCUMENTS, "Freshness Validation")

    updated = await engine.update_step_status(
        step.id,
        StepStatus.FAILED,
        failure_reason="Document older than 6 months",
        failure_suggestion="Upload a recent document",
    )

    assert updated.status == StepStatus.FAILED
    assert updated.failure_reason == "Document older than 6 months"
    assert updated.verified_at is None
    pillar = await engine.get_pillar(user_id, "documents")
    assert pillar.completion_percentage == 0
    assert pillar.status == "in_progress"


@pytest.mark.asyncio
async def test_retry_ceiling(make_engine, create_user):
    user_id = await create_user()
    engine = make_engine(email_oracle=_oracle(False))
    center = await engine.initialize_for_user(user_id)
    step_id = _step(center, PillarKind.PERSONAL_INFO, "Face Match").id

    for attempt in (1, 2, 3):
        await engine.update_step_status(step_id, StepStatus.FAILED, failure_reason="Blurry photo")
        retried = await engine.retry_step(step_id)
        assert retried.status == StepStatus.PENDING
        assert retried.retry_count == attempt
    await engine.update_step_status(step_id, StepStatus.FAILED, failure_reason="Blurry photo")

    with pytest.raises(RetryLimitExceededError):
        await engine.retry_step(step_id)

    details = await engine.get_step_details(step_id)
    assert details.step.retry_count == 3
    assert details.step.status == StepStatus.FAILED
    assert details.step.can_retry is False


@pytest.mark.asyncio
async def test_admin_override_after_exhausted_retries(make_engine, create_user):
    user_id = await create_user()
    engine = make_engine(email_oracle=_oracle(False), max_retries=1)
    center = await engine.initialize_for_user(user_id)
    step_id = _step(center, PillarKind.SCHOOL, "Admin Attestation").id
    await engine.update_step_status(step_id, StepStatus.FAILED)
    await engine.retry_step(step_id)
    await engine.update_step_status(step_id, StepStatus.FAILED)

    reviewed = await engine.review_step_as_admin(step_id, "admin-7", "verified", "Confirmed by registrar")

    assert reviewed.status == StepStatus.VERIFIED
    assert reviewed.admin_reviewer_id == "admin-7"
    assert reviewed.admin_review_notes == "Confirmed by registrar"
    assert reviewed.status_message == "Verified by admin"
    assert reviewed.retry_count == 1
    pillar = await engine.get_pillar(user_id, PillarKind.SCHOOL)
    assert pillar.completion_percentage == 33


@pytest.mark.asyncio
async def test_failed_step_reopens_only_through_retry(make_engine, create_user):
    user_id = await create_user()
    engine = make_engine(email_oracle=_oracle(False))
    center = await engine.initialize_for_user(user_id)
    step_id = _step(center, PillarKind.PERSONAL_INFO, "Face Match").id
    await engine.update_step_status(step_id, StepStatus.FAILED)

    with pytest.raises(InvalidStepTransitionError):
        await engine.update_step_status(step_id, StepStatus.PENDING, user_id=user_id)

    details = await engine.get_step_details(step_id)
    assert details.step.status == StepStatus.FAILED
    assert details.step.retry_count == 0


@pytest.mark.asyncio
async def test_admin_failure_after_exhausted_retries_is_final(make_engine, create_user):
    user_id = await create_user()
    engine = make_engine(email_oracle=_oracle(False), max_retries=1)
    center = await engine.initialize_for_user(user_id)
    step_id = _step(center, PillarKind.PERSONAL_INFO, "Face Match").id
    await engine.update_step_status(step_id, StepStatus.FAILED)
    await engine.retry_step(step_id)
    await engine.review_step_as_admin(step_id, "admin-3", "failed", "Photo does not match ID")

    for status in (StepStatus.PENDING, StepStatus.FAILED, StepStatus.VERIFIED):
        with pytest.raises(InvalidStepTransitionError):
            await engine.update_step_status(step_id, status, user_id=user_id)
    with pytest.raises(RetryLimitExceededError):
        await engine.retry_step(step_id, user_id=user_id)

    details = await engine.get_step_details(step_id)
    assert details.step.status == StepStatus.FAILED
    assert details.step.retry_count == 1
    assert details.step.admin_review_notes == "Photo does not match ID"


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [StepStatus.NOT_VERIFIED, StepStatus.PENDING])
async def test_retry_requires_failed_step(make_engine, create_user, status):
    user_id = await create_user()
    engine = make_engine(email_oracle=_oracle(False))
    center = await engine.initialize_for_user(user_id)
    step_id = _step(center, PillarKind.DOCUMENTS, "Content Match Check").id
    if status == StepStatus.PENDING:
        await engine.update_step_status(step_id, StepStatus.PENDING)

    with pytest.raises(InvalidStepTransitionError):
        await engine.retry_step(step_id)

    details = await engine.get_step_details(step_id)
    assert details.step.status == status
    assert details.step.retry_count == 0


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "kind,name",
    [
        (PillarKind.PERSONAL_INFO, "Government ID"),
        (PillarKind.SCHOOL, "Direct School Verification"),
        (PillarKind.SCHOOL, "Admin Attestation"),
    ],
)
async def test_user_cannot_verify_reviewed_steps(make_engine, create_user, kind, name):
    user_id = await create_user()
    engine = make_engine(email_oracle=_oracle(False))
    center = await engine.initialize_for_user(user_id)
    step_id = _step(center, kind, name).id

    with pytest.raises(InvalidStepTransitionError):
        await engine.update_step_status(step_id, StepStatus.VERIFIED, user_id=user_id)

    pending = await engine.update_step_status(step_id, StepStatus.PENDING, user_id=user_id)
    assert pending.status == StepStatus.PENDING
    face = _step(center, PillarKind.PERSONAL_INFO, "Face Match")
    verified = await engine.update_step_status(face.id, StepStatus.VERIFIED, user_id=user_id)
    assert verified.status == StepStatus.VERIFIED


@pytest.mark.asyncio
async def test_admin_failure_records_reason(make_engine, create_user):
    user_id = await create_user()
    engine = make_engine(email_oracle=_oracle(False))
    center = await engine.initialize_for_user(user_id)
    step_id = _step(center, PillarKind.PERSONAL_INFO, "Government ID").id
    await engine.update_step_status(step_id, StepStatus.PENDING)

    reviewed = await engine.review_step_as_admin(step_id, uuid4(), "failed", "ID is expired")

    assert reviewed.status == StepStatus.FAILED
    assert reviewed.failure_reason == "ID is expired"
    assert reviewed.status_message == "Failed: ID is expired"


@pytest.mark.asyncio
@pytest.mark.parametrize("notes", [None, "", "   "])
async def test_admin_review_requires_notes(make_engine, create_user, notes):
    user_id = await create_user()
    engine = make_engine(email_oracle=_oracle(False))
    center = await engine.initialize_for_user(user_id)
    step_id = _step(center, PillarKind.SCHOOL, "Admin Attestation").id
    engine.steps.update_status = AsyncMock(wraps=engine.steps.update_status)

    with pytest.raises(ValidationError, match="notes are required"):
        await engine.review_step_as_admin(step_id, "admin-1", "verified", notes)

    engine.steps.update_status.assert_not_called()
    details = await engine.get_step_details(step_id)
    assert details.step.status == StepStatus.NOT_VERIFIED
    assert details.step.admin_reviewer_id is None


@pytest.mark.asyncio
async def test_admin_review_rejects_unknown_decision(make_engine):
    with pytest.raises(ValidationError, match="Invalid review decision"):
        await make_engine().review_step_as_admin(uuid4(), "admin-1", "maybe", "Looks fine to me")


@pytest.mark.asyncio
async def test_verified_step_never_regresses(make_engine, create_user):
    user_id = await create_user(email_verified=True)
    engine = make_engine()
    center = await engine.initialize_for_user(user_id)
    step_id = _step(center, PillarKind.PERSONAL_INFO, "Contact Verification").id

    with pytest.raises(InvalidStepTransitionError):
        await engine.update_step_status(step_id, StepStatus.FAILED)
    with pytest.raises(InvalidStepTransitionError):
        await engine.update_step_status(step_id, StepStatus.NOT_VERIFIED)
    with pytest.raises(InvalidStepTransitionError):
        await engine.retry_step(step_id)
    with pytest.raises(InvalidStepTransitionError):
        await engine.review_step_as_admin(step_id, "admin-1", "failed", "Phone number bounced")

    details = await engine.get_step_details(step_id)
    assert details.step.status == StepStatus.VERIFIED
    assert details.step.retry_count == 0
    pillar = await engine.get_pillar(user_id, PillarKind.PERSONAL_INFO)
    assert pillar.completion_percentage == 33


@pytest.mark.asyncio
async def test_attempted_step_cannot_return_to_not_verified(make_engine, create_user):
    user_id = await create_user()
    engine = make_engine(email_oracle=_oracle(False))
    center = await engine.initialize_for_user(user_id)
    step_id = _step(center, PillarKind.ACADEMIC_INFO, "Program & Level Validation").id
    await engine.update_step_status(step_id, StepStatus.PENDING)

    with pytest.raises(InvalidStepTransitionError):
        await engine.update_step_status(step_id, StepStatus.NOT_VERIFIED)


@pytest.mark.asyncio
async def test_invalid_status_value(make_engine):
    with pytest.raises(ValidationError, match="Invalid step status"):
        await make_engine().update_step_status(uuid4(), "approved")


@pytest.mark.asyncio
async def test_unknown_step_is_not_found(make_engine):
    engine = make_engine()
    missing = uuid4()

    with pytest.raises(StepNotFoundError):
        await engine.update_step_status(missing, StepStatus.PENDING)
    with pytest.raises(StepNotFoundError):
        await engine.retry_step(missing)
    with pytest.raises(StepNotFoundError):
        await engine.review_step_as_admin(missing, "admin-1", "verified", "Looks right")
    with pytest.raises(StepNotFoundError):
        await engine.upload_step_evidence(missing, "photo", "s3://bucket/x.png")
    with pytest.raises(StepNotFoundError):
        await engine.get_step_details(missing)


@pytest.mark.asyncio
async def test_step_of_another_user_is_not_found(make_engine, create_user):
    owner = await create_user()
    stranger = await create_user()
    engine = make_engine(email_oracle=_oracle(False))
    center = await engine.initialize_for_user(owner)
    step_id = _step(center, PillarKind.DOCUMENTS, "Content Match Check").id

    with pytest.raises(StepNotFoundError):
        await engine.update_step_status(step_id, StepStatus.PENDING, user_id=stranger)
    with pytest.raises(StepNotFoundError):
        await engine.retry_step(step_id, user_id=stranger)
    with pytest.raises(StepNotFoundError):
        await engine.upload_step_evidence(step_id, "photo", "s3://bucket/x.png", user_id=stranger)

    updated = await engine.update_step_status(step_id, StepStatus.PENDING, user_id=owner)
    assert updated.status == StepStatus.PENDING


@pytest.mark.asyncio
async def test_get_pillar_errors(make_engine):
    engine = make_engine()

    with pytest.raises(PillarNotFoundError):
        await engine.get_pillar(uuid4(), PillarKind.SCHOOL)
    with pytest.raises(ValidationError):
        await engine.get_pillar(uuid4(), "hobbies")


@pytest.mark.asyncio
async def test_user_verification_status(make_engine, create_user):
    user_id = await create_user()
    engine = make_engine(email_oracle=_oracle(False))

    with pytest.raises(UserNotFoundError):
        await engine.get_user_verification_status(user_id)

    await engine.initialize_for_user(user_id)
    center = await engine.get_user_verification_status(user_id)
    assert center.user_id == user_id
    assert len(center.pillars) == 4


@pytest.mark.asyncio
async def test_evidence_upload_and_details(make_engine, create_user, clock):
    user_id = await create_user()
    engine = make_engine(email_oracle=_oracle(False))
    center = await engine.initialize_for_user(user_id)
    step_id = _step(center, PillarKind.DOCUMENTS, "Document Upload & Readability").id

    first = await engine.upload_step_evidence(
        step_id, "transcript", "s3://docs/t1.pdf", {"pages": 3}, user_id=user_id
    )
    clock.advance(minutes=2)
    second = await engine.upload_step_evidence(step_id, " transcript ", " s3://docs/t2.pdf ")

    assert second.evidence_type == "transcript"
    assert second.evidence_url == "s3://docs/t2.pdf"

    details = await engine.get_step_details(step_id)
    assert details.pillar_name == PillarKind.DOCUMENTS
    assert [e.id for e in details.evidence] == [second.id, first.id]
    assert details.evidence[1].evidence_metadata == {"pages": 3}
    assert details.step.status == StepStatus.NOT_VERIFIED


@pytest.mark.asyncio
async def test_evidence_requires_type_and_url(make_engine):
    engine = make_engine()

    with pytest.raises(ValidationError):
        await engine.upload_step_evidence(uuid4(), " ", "s3://x")
    with pytest.raises(ValidationError):
        await engine.upload_step_evidence(uuid4(), "photo", "")


@pytest.mark.asyncio
async def test_stale_step_write_is_reported(make_engine, create_user):
    user_id = await create_user()
    engine = make_engine(email_oracle=_oracle(False))
    center = await engine.initialize_for_user(user_id)
    step_id = _step(center, PillarKind.SCHOOL, "Admin Attestation").id
    engine.steps.update_status = AsyncMock(side_effect=StaleDataError("version mismatch"))

    with pytest.raises(ConcurrentModificationError):
        await engine.review_step_as_admin(step_id, "admin-2", "verified", "Second reviewer")


@pytest.mark.asyncio
async def test_pending_queue(make_engine, create_user, clock):
    engine = make_engine(email_oracle=_oracle(False))
    alice = await create_user(first_name="Alice", last_name="Ng", email="alice@example.edu")
    bob = await create_user(first_name="Bob", last_name="Okafor", email="bob@example.edu")
    ghost = uuid4()

    expected = []
    for user_id in (alice, bob, ghost):
        center = await engine.initialize_for_user(user_id)
        step = _step(center, PillarKind.SCHOOL, "Direct School Verification")
        clock.advance(minutes=1)
        await engine.update_step_status(step.id, StepStatus.PENDING)
        expected.append(step.id)
    alice_center = await engine.get_center(alice)
    clock.advance(minutes=1)
    face = _step(alice_center, PillarKind.PERSONAL_INFO, "Face Match")
    await engine.update_step_status(face.id, StepStatus.PENDING)

    page = await engine.list_pending_verifications(page=1, limit=10)

    assert page.total == 4
    assert page.total_pages == 1
    assert [item.step.id for item in page.items] == [face.id] + list(reversed(expected))
    first = page.items[0]
    assert first.user_email == "alice@example.edu"
    assert first.user_name == "Alice Ng"
    assert first.pillar_name == PillarKind.PERSONAL_INFO
    assert first.weight_percentage == 25
    ghost_item = page.items[1]
    assert ghost_item.user_email == ""
    assert ghost_item.user_name == ""

    school = await engine.list_pending_verifications(pillar="school")
    assert school.total == 3
    named = await engine.list_pending_verifications(step_name="Face Match")
    assert [item.step.id for item in named.items] == [face.id]

    second_page = await engine.list_pending_verifications(page=2, limit=3)
    assert second_page.total == 4
    assert second_page.total_pages == 2
    assert [item.step.id for item in second_page.items] == [expected[0]]


@pytest.mark.asyncio
@pytest.mark.parametrize("page,limit", [(0, 10), (1, 0), (1, 101)])
async def test_pending_queue_rejects_bad_paging(make_engine, page, limit):
    with pytest.raises(ValidationError):
        await make_engine().list_pending_verifications(page=page, limit=limit)
