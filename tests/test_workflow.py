"""Tests for workflow transitions on registrations."""
import pytest
from sqlalchemy.exc import OperationalError

from progression.errors import IllegalTransition, InvalidFieldValue, NotFound, TransientIOError
from progression.models import (
    Event, Registration, ScreeningStatus, PresentationStatus, QualificationStatus, AwardType,
)
from progression.services.workflow import (
    register_participant, mark_attendance, send_screening_test, skip_screening, complete_screening,
    submit_presentation, mark_presentation_reviewed, decide_qualification, assign_award, remove_award,
    update_admin_notes, update_admin_score, bulk_mark_attendance, bulk_send_screening_test,
    bulk_skip_screening, coerce_status, event_awards, user_registrations,
)
from progression.services.notifications import Notifier, get_notifier, set_notifier


@pytest.fixture
def presented(make_registration):
    """Registration that skipped screening and has submitted its project."""

    def _make(**fields):
        fields.setdefault("attended", True)
        fields.setdefault("screening_status", ScreeningStatus.SKIPPED)
        fields.setdefault("presentation_status", PresentationStatus.SUBMITTED)
        fields.setdefault("repository_url", "https://github.com/example/project")
        return make_registration(**fields)

    return _make


@pytest.fixture
def sent_notifications():
    """Registration ids the notifier was told about, in order."""
    sent = []

    class RecordingNotifier(Notifier):
        def screening_test_sent(self, registration, screening_test):
            sent.append(registration.id)

    previous = get_notifier()
    set_notifier(RecordingNotifier())
    yield sent
    set_notifier(previous)


class TestRegistration:
    def test_new_registration_starts_pending(self, db, make_user, event):
        user = make_user()

        registration = register_participant(db, user, event, amount_paid=25)

        assert registration.attended is False
        assert registration.screening_status == ScreeningStatus.PENDING
        assert registration.presentation_status == PresentationStatus.PENDING
        assert registration.qualification_status == QualificationStatus.PENDING
        assert registration.award_type == AwardType.NONE
        assert float(registration.amount_paid) == 25.0

    def test_duplicate_registration_is_refused(self, db, make_user, event):
        user = make_user()
        register_participant(db, user, event)

        with pytest.raises(IllegalTransition):
            register_participant(db, user, event)
        assert db.query(Registration).count() == 1


    def test_user_registrations_newest_first(self, db, make_user, make_registration):
        user = make_user()
        autumn = Event(title="Autumn Hackathon")
        db.add(autumn)
        db.commit()
        older = make_registration(user=user)
        newer = make_registration(user=user, event_id=autumn.id)
        make_registration()

        assert [r.id for r in user_registrations(db, user.id)] == [newer.id, older.id]


class TestScreeningTransitions:
    def test_send_requires_attendance(self, db, make_registration, make_screening_test):
        screening_test = make_screening_test()
        registration = make_registration(attended=False)

        with pytest.raises(IllegalTransition):
            send_screening_test(db, registration, screening_test)
        db.refresh(registration)
        assert registration.screening_status == ScreeningStatus.PENDING
        assert registration.screening_test_id is None

    def test_send_records_the_test(self, db, make_registration, make_screening_test):
        screening_test = make_screening_test()
        registration = make_registration(attended=True)

        send_screening_test(db, registration, screening_test)

        db.refresh(registration)
        assert registration.screening_status == ScreeningStatus.SENT
        assert registration.screening_test_id == screening_test.id

    def test_send_refuses_a_test_of_another_event(self, db, make_registration, make_screening_test):
        from progression.models import Event

        other = Event(title="Other Event")
        db.add(other)
        db.commit()
        screening_test = make_screening_test(event_id=other.id)
        registration = make_registration(attended=True)

        with pytest.raises(InvalidFieldValue):
            send_screening_test(db, registration, screening_test)

    def test_completed_screening_cannot_be_sent_again(self, db, make_registration, make_screening_test):
        screening_test = make_screening_test()
        registration = make_registration(attended=True, screening_status=ScreeningStatus.COMPLETED)

        with pytest.raises(IllegalTransition):
            send_screening_test(db, registration, screening_test)

    @pytest.mark.parametrize("start", [ScreeningStatus.PENDING, ScreeningStatus.SENT])
    def test_skip_from_pending_or_sent(self, db, make_registration, start):
        registration = make_registration(attended=True, screening_status=start)

        skip_screening(db, registration)

        assert registration.screening_status == ScreeningStatus.SKIPPED

    def test_completed_screening_cannot_be_skipped(self, db, make_registration):
        registration = make_registration(attended=True, screening_status=ScreeningStatus.COMPLETED)

        with pytest.raises(IllegalTransition):
            skip_screening(db, registration)

    def test_complete_is_idempotent(self, make_registration):
        registration = make_registration(attended=True, screening_status=ScreeningStatus.SENT)

        assert complete_screening(registration) is True
        assert complete_screening(registration) is False
        assert registration.screening_status == ScreeningStatus.COMPLETED

    def test_complete_requires_a_sent_test(self, make_registration):
        registration = make_registration(attended=True)

        with pytest.raises(IllegalTransition):
            complete_screening(registration)


class TestBulkOperations:
    def test_send_to_five_attendees_rejects_the_absent_sixth(self, db, make_registration, make_screening_test):
        screening_test = make_screening_test()
        attendees = [make_registration(attended=True) for _ in range(5)]
        absent = make_registration(attended=False)

        result = bulk_send_screening_test(
            db, screening_test.event_id, [r.id for r in attendees] + [absent.id], screening_test
        )

        assert result.success_count == 5
        assert result.failure_count == 1
        assert absent.id in result.failed
        assert result.completed_with_warnings is True
        for registration in attendees:
            db.refresh(registration)
            assert registration.screening_status == ScreeningStatus.SENT
        db.refresh(absent)
        assert absent.screening_status == ScreeningStatus.PENDING

    def test_send_notifies_only_the_sent(self, db, make_registration, make_screening_test, sent_notifications):
        screening_test = make_screening_test()
        present = make_registration(attended=True)
        absent = make_registration(attended=False)

        bulk_send_screening_test(db, screening_test.event_id, [present.id, absent.id], screening_test)

        assert sent_notifications == [present.id]

    def test_failed_commit_sends_no_notifications(
        self, db, make_registration, make_screening_test, sent_notifications, monkeypatch
    ):
        screening_test = make_screening_test()
        registration = make_registration(attended=True)

        def failing_commit():
            raise OperationalError("COMMIT", {}, Exception("database is locked"))

        monkeypatch.setattr(db, "commit", failing_commit)
        with pytest.raises(TransientIOError):
            bulk_send_screening_test(db, screening_test.event_id, [registration.id], screening_test)
        monkeypatch.undo()

        assert sent_notifications == []
        db.refresh(registration)
        assert registration.screening_status == ScreeningStatus.PENDING

    def test_single_send_notifies(self, db, make_registration, make_screening_test, sent_notifications):
        screening_test = make_screening_test()
        registration = make_registration(attended=True)

        send_screening_test(db, registration, screening_test)

        assert sent_notifications == [registration.id]

    def test_unknown_and_foreign_ids_are_reported(self, db, make_registration, event):
        registration = make_registration()

        result = bulk_mark_attendance(db, event.id, [registration.id, 9999, registration.id], True)

        assert result.succeeded == [registration.id]
        assert result.failed == {9999: "Registration not found for this event"}
        db.refresh(registration)
        assert registration.attended is True

    def test_bulk_skip(self, db, make_registration, event):
        pending = make_registration(attended=True)
        completed = make_registration(attended=True, screening_status=ScreeningStatus.COMPLETED)

        result = bulk_skip_screening(db, event.id, [pending.id, completed.id])

        assert result.succeeded == [pending.id]
        assert list(result.failed) == [completed.id]
        assert result.as_dict()["completed_with_warnings"] is True

    def test_mark_attendance(self, db, make_registration):
        registration = make_registration()

        mark_attendance(db, registration, True)

        db.refresh(registration)
        assert registration.attended is True


class TestPresentation:
    def test_submission_waits_for_screening(self, db, make_registration):
        registration = make_registration(attended=True, screening_status=ScreeningStatus.SENT)

        with pytest.raises(IllegalTransition):
            submit_presentation(db, registration, "https://github.com/example/project")
        assert registration.presentation_status == PresentationStatus.PENDING

    def test_failed_screening_blocks_submission(
        self, db, make_registration, make_screening_test, make_attempt
    ):
        screening_test = make_screening_test()
        registration = make_registration(attended=True, screening_status=ScreeningStatus.SENT)
        make_attempt(registration, screening_test, score=40)

        with pytest.raises(IllegalTransition) as exc_info:
            submit_presentation(db, registration, "https://github.com/example/project")
        assert "passing score" in exc_info.value.message

    def test_passed_screening_opens_submission(
        self, db, make_registration, make_screening_test, make_attempt
    ):
        screening_test = make_screening_test()
        registration = make_registration(attended=True, screening_status=ScreeningStatus.SENT)
        make_attempt(registration, screening_test, score=90)

        submit_presentation(
            db, registration, " https://github.com/example/project ",
            demo_url="https://demo.example.com",
        )

        assert registration.presentation_status == PresentationStatus.SUBMITTED
        assert registration.repository_url == "https://github.com/example/project"
        assert registration.demo_url == "https://demo.example.com"
        assert registration.presentation_submitted_at is not None

    def test_resubmission_updates_links(self, db, presented):
        registration = presented()

        submit_presentation(db, registration, "https://github.com/example/v2")

        assert registration.presentation_status == PresentationStatus.SUBMITTED
        assert registration.repository_url == "https://github.com/example/v2"

    def test_repository_link_is_required(self, db, make_registration):
        registration = make_registration(attended=True, screening_status=ScreeningStatus.SKIPPED)

        with pytest.raises(InvalidFieldValue):
            submit_presentation(db, registration, "  ")

    def test_reviewed_project_cannot_be_resubmitted(self, db, presented):
        registration = presented(presentation_status=PresentationStatus.REVIEWED)

        with pytest.raises(IllegalTransition):
            submit_presentation(db, registration, "https://github.com/example/v2")

    def test_review_requires_submission(self, db, make_registration):
        registration = make_registration(attended=True)

        with pytest.raises(IllegalTransition):
            mark_presentation_reviewed(db, registration)

    def test_review(self, db, presented):
        registration = presented()

        mark_presentation_reviewed(db, registration)

        assert registration.presentation_status == PresentationStatus.REVIEWED


class TestQualificationAndAwards:
    def test_qualification_requires_a_submitted_project(self, db, make_registration, admin):
        registration = make_registration(attended=True, screening_status=ScreeningStatus.SKIPPED)

        with pytest.raises(IllegalTransition):
            decide_qualification(db, registration, "qualified", admin)

    def test_qualify_records_decision(self, db, presented, admin):
        registration = presented()

        decide_qualification(db, registration, QualificationStatus.QUALIFIED, admin, remarks="Strong demo")

        assert registration.qualification_status == QualificationStatus.QUALIFIED
        assert registration.qualification_remarks == "Strong demo"
        assert registration.qualified_by == admin.id
        assert registration.qualified_at is not None

    def test_decision_changes_go_through_pending(self, db, presented, admin):
        registration = presented()
        decide_qualification(db, registration, "qualified", admin)

        with pytest.raises(IllegalTransition):
            decide_qualification(db, registration, "rejected", admin)

        decide_qualification(db, registration, "pending", admin)
        assert registration.qualified_at is None
        decide_qualification(db, registration, "rejected", admin)
        assert registration.qualification_status == QualificationStatus.REJECTED

    def test_unknown_status_is_invalid(self, db, presented, admin):
        registration = presented()

        with pytest.raises(InvalidFieldValue):
            decide_qualification(db, registration, "maybe", admin)

    def test_award_requires_qualification(self, db, presented, admin):
        registration = presented()

        with pytest.raises(IllegalTransition):
            assign_award(db, registration, AwardType.WINNER, admin)
        assert registration.award_type == AwardType.NONE

    def test_winner_does_not_touch_other_registrations(self, db, presented, admin):
        runner_up = presented(qualification_status=QualificationStatus.QUALIFIED)
        winner = presented(qualification_status=QualificationStatus.QUALIFIED)
        bystander = presented(qualification_status=QualificationStatus.QUALIFIED)
        assign_award(db, runner_up, "runner_up", admin)

        assign_award(db, winner, "winner", admin)

        db.refresh(runner_up)
        db.refresh(bystander)
        assert winner.award_type == AwardType.WINNER
        assert winner.award_assigned_by == admin.id
        assert runner_up.award_type == AwardType.RUNNER_UP
        assert bystander.award_type == AwardType.NONE

    def test_one_winner_per_event(self, db, presented, admin):
        first = presented(qualification_status=QualificationStatus.QUALIFIED)
        second = presented(qualification_status=QualificationStatus.QUALIFIED)
        assign_award(db, first, "winner", admin)

        with pytest.raises(IllegalTransition):
            assign_award(db, second, "winner", admin)

        assign_award(db, second, "runner_up", admin)
        assert second.award_type == AwardType.RUNNER_UP

    def test_award_cannot_be_switched_directly(self, db, presented, admin):
        registration = presented(qualification_status=QualificationStatus.QUALIFIED)
        assign_award(db, registration, "runner_up", admin)

        with pytest.raises(IllegalTransition):
            assign_award(db, registration, "winner", admin)

    def test_none_is_not_an_assignable_award(self, db, presented, admin):
        registration = presented(qualification_status=QualificationStatus.QUALIFIED)

        with pytest.raises(InvalidFieldValue):
            assign_award(db, registration, "none", admin)

    def test_qualification_cannot_change_while_awarded(self, db, presented, admin):
        registration = presented(qualification_status=QualificationStatus.QUALIFIED)
        assign_award(db, registration, "winner", admin)

        with pytest.raises(IllegalTransition):
            decide_qualification(db, registration, "pending", admin)
        assert registration.qualification_status == QualificationStatus.QUALIFIED
        assert registration.award_type == AwardType.WINNER

        remove_award(db, registration)
        decide_qualification(db, registration, "pending", admin)
        assert registration.award_type == AwardType.NONE
        assert registration.award_assigned_by is None

    def test_event_awards_split_by_type(self, db, presented, admin, event):
        first_runner_up = presented(qualification_status=QualificationStatus.QUALIFIED)
        winner = presented(qualification_status=QualificationStatus.QUALIFIED)
        second_runner_up = presented(qualification_status=QualificationStatus.QUALIFIED)
        presented(qualification_status=QualificationStatus.QUALIFIED)
        assign_award(db, first_runner_up, "runner_up", admin)
        assign_award(db, winner, "winner", admin)
        assign_award(db, second_runner_up, "runner_up", admin)

        winners, runners_up = event_awards(db, event.id)

        assert [r.id for r in winners] == [winner.id]
        assert [r.id for r in runners_up] == [first_runner_up.id, second_runner_up.id]

    def test_removed_award_is_not_listed(self, db, presented, admin, event):
        registration = presented(qualification_status=QualificationStatus.QUALIFIED)
        assign_award(db, registration, "winner", admin)
        remove_award(db, registration)

        assert event_awards(db, event.id) == ([], [])

    def test_remove_without_award(self, db, presented):
        registration = presented()

        with pytest.raises(IllegalTransition):
            remove_award(db, registration)


class TestAdminReview:
    def test_notes_are_trimmed_and_cleared(self, db, make_registration):
        registration = make_registration()

        update_admin_notes(db, registration, "  promising  ")
        assert registration.admin_notes == "promising"
        update_admin_notes(db, registration, "   ")
        assert registration.admin_notes is None

    @pytest.mark.parametrize("score", [-1, 101])
    def test_score_out_of_range(self, db, make_registration, score):
        registration = make_registration()

        with pytest.raises(InvalidFieldValue):
            update_admin_score(db, registration, score)
        assert registration.admin_score is None

    def test_score_bounds_and_clear(self, db, make_registration):
        registration = make_registration()

        update_admin_score(db, registration, 100)
        assert registration.admin_score == 100
        update_admin_score(db, registration, 0)
        assert registration.admin_score == 0
        update_admin_score(db, registration, None)
        assert registration.admin_score is None


def test_coerce_status_accepts_values_and_members():
    assert coerce_status(AwardType, "winner", "award_type") == AwardType.WINNER
    assert coerce_status(AwardType, AwardType.NONE, "award_type") == AwardType.NONE
    with pytest.raises(InvalidFieldValue):
        coerce_status(AwardType, "gold", "award_type")


def test_unknown_registration(db):
    from progression.services.workflow import get_registration

    with pytest.raises(NotFound):
        get_registration(db, 12345)
