"""
Tests for template batches, moderation counters and the approved pool.
"""

import asyncio
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError

from engliquest.errors import NoValidQuestions, NotFoundError, PersistenceError, ValidationError
from engliquest.models import ApprovedQuestionPool, TemplateBatch, TemplateQuestion
from engliquest.settings import settings
from engliquest.templates import (
    approve_questions,
    compute_batch_status,
    create_batch,
    generate_template_batch,
    list_batches,
    reconcile_batch_statuses,
    reject_questions,
    unapprove_questions,
    update_question,
)

from mocks.gemini_mocks import FakeGenerator, question_models

pytestmark = pytest.mark.integration

POOL_ID = "Sports & Games_A1_Vocabulary"


def question_ids(batch, *indexes):
    return [f"{batch.id}_q{i}" for i in indexes]


def assert_counters_consistent(db):
    for b in db.query(TemplateBatch).all():
        assert b.approved_count + b.pending_count + b.rejected_count == b.total_questions
    for pool in db.query(ApprovedQuestionPool).all():
        live = (
            db.query(TemplateQuestion)
            .filter(
                TemplateQuestion.interest == pool.interest,
                TemplateQuestion.level == pool.level,
                TemplateQuestion.game_mode == pool.game_mode,
                TemplateQuestion.status == "approved",
            )
            .count()
        )
        assert pool.total_questions == live


class TestCreateBatch:
    def test_batch_and_questions_saved_together(self, db, batch):
        assert batch.id == "Sports & Games_A1_Vocabulary_batch1"
        assert batch.total_questions == 10
        assert batch.pending_count == 10
        assert batch.status == "all_pending"
        rows = db.query(TemplateQuestion).filter_by(batch_id=batch.id).order_by(TemplateQuestion.question_index).all()
        assert [r.id for r in rows] == question_ids(batch, *range(10))
        assert all(r.status == "pending" and r.difficulty == "easy" for r in rows)

    def test_batch_numbers_increase_per_pool(self, db, batch):
        second = create_batch(db, "Sports & Games", "A1", "Vocabulary", question_models(2))
        other_pool = create_batch(db, "Music & Arts", "A1", "Vocabulary", question_models(2))
        assert second.batch_number == 2
        assert second.id.endswith("_batch2")
        assert other_pool.batch_number == 1

    def test_empty_question_list_writes_nothing(self, db):
        with pytest.raises(NoValidQuestions):
            create_batch(db, "Sports & Games", "A1", "Vocabulary", [])
        assert db.query(TemplateBatch).count() == 0

    def test_too_many_writes_for_one_commit(self, db, monkeypatch):
        monkeypatch.setattr(settings, "max_writes_per_commit", 5)
        with pytest.raises(PersistenceError):
            create_batch(db, "Sports & Games", "A1", "Vocabulary", question_models(5))
        assert db.query(TemplateBatch).count() == 0
        assert db.query(TemplateQuestion).count() == 0

    def test_failed_commit_leaves_no_orphan_batch(self, db):
        with patch.object(db, "commit", side_effect=OperationalError("INSERT", {}, Exception("disk full"))):
            with pytest.raises(PersistenceError):
                create_batch(db, "Sports & Games", "A1", "Vocabulary", question_models(3))
        assert db.query(TemplateBatch).count() == 0
        assert db.query(TemplateQuestion).count() == 0


class TestGenerateTemplateBatch:
    def test_sized_by_valid_questions_not_request(self, db):
        batch = asyncio.run(
            generate_template_batch(db, FakeGenerator(), "Sports & Games", "A1", "Vocabulary", 10, generated_by="admin")
        )
        assert batch.total_questions == 10
        assert batch.requested_questions == 10
        assert batch.generated_by == "admin"

    def test_zero_valid_questions_writes_nothing(self, db):
        generator = FakeGenerator(default="[]")
        with pytest.raises(NoValidQuestions):
            asyncio.run(generate_template_batch(db, generator, "Sports & Games", "A1", "Vocabulary", 10))
        assert db.query(TemplateBatch).count() == 0
        assert db.query(TemplateQuestion).count() == 0


class TestApprove:
    def test_generate_then_approve_six_of_ten(self, db, batch):
        result = approve_questions(db, question_ids(batch, *range(6)), admin_id="admin")
        assert result.changed == 6
        db.refresh(batch)
        assert (batch.approved_count, batch.pending_count, batch.rejected_count) == (6, 4, 0)
        assert batch.status == "partially_approved"
        pool = db.get(ApprovedQuestionPool, POOL_ID)
        assert pool.total_questions == 6
        assert pool.source_batches == [batch.id]
        row = db.get(TemplateQuestion, question_ids(batch, 0)[0])
        assert row.approved_by == "admin"
        assert row.approved_at is not None
        assert_counters_consistent(db)

    def test_already_approved_ids_are_not_counted_twice(self, db, batch):
        approve_questions(db, question_ids(batch, 0, 1))
        result = approve_questions(db, question_ids(batch, 0, 1, 2, 2))
        assert result.requested == 3
        assert result.changed == 1
        assert result.skipped == 2
        db.refresh(batch)
        assert batch.approved_count == 3
        assert db.get(ApprovedQuestionPool, POOL_ID).total_questions == 3
        assert_counters_consistent(db)

    def test_approving_everything_marks_batch_all_approved(self, db, batch):
        approve_questions(db, question_ids(batch, *range(10)))
        db.refresh(batch)
        assert batch.status == "all_approved"

    def test_pool_deltas_are_per_pool(self, db, batch):
        other = create_batch(db, "Music & Arts", "A1", "Vocabulary", question_models(4))
        approve_questions(db, question_ids(batch, 0, 1, 2) + question_ids(other, 0))
        assert db.get(ApprovedQuestionPool, POOL_ID).total_questions == 3
        assert db.get(ApprovedQuestionPool, "Music & Arts_A1_Vocabulary").total_questions == 1
        assert_counters_consistent(db)

    def test_source_batches_accumulate(self, db, batch):
        second = create_batch(db, "Sports & Games", "A1", "Vocabulary", question_models(3))
        approve_questions(db, question_ids(batch, 0))
        approve_questions(db, question_ids(second, 0))
        pool = db.get(ApprovedQuestionPool, POOL_ID)
        assert sorted(pool.source_batches) == sorted([batch.id, second.id])
        assert pool.total_questions == 2

    def test_rejected_questions_cannot_be_approved(self, db, batch):
        reject_questions(db, question_ids(batch, 0))
        result = approve_questions(db, question_ids(batch, 0))
        assert result.changed == 0
        assert db.get(ApprovedQuestionPool, POOL_ID) is None

    def test_unknown_ids_are_skipped(self, db, batch):
        result = approve_questions(db, ["missing_q0"])
        assert (result.changed, result.skipped) == (0, 1)

    def test_empty_request_is_invalid(self, db):
        with pytest.raises(ValidationError):
            approve_questions(db, [])

    def test_failed_commit_moves_no_counter(self, db, batch):
        with patch.object(db, "commit", side_effect=OperationalError("UPDATE", {}, Exception("locked"))):
            with pytest.raises(PersistenceError):
                approve_questions(db, question_ids(batch, 0, 1))
        db.expire_all()
        assert db.get(TemplateBatch, batch.id).approved_count == 0
        assert db.get(TemplateQuestion, question_ids(batch, 0)[0]).status == "pending"
        assert db.get(ApprovedQuestionPool, POOL_ID) is None


class TestReject:
    def test_reject_moves_pending_to_rejected(self, db, batch):
        result = reject_questions(db, question_ids(batch, 0, 1), reason="Ambiguous options")
        assert result.changed == 2
        db.refresh(batch)
        assert (batch.approved_count, batch.pending_count, batch.rejected_count) == (0, 8, 2)
        assert batch.status == "partially_approved"
        row = db.get(TemplateQuestion, question_ids(batch, 0)[0])
        assert row.status == "rejected"
        assert row.rejection_reason == "Ambiguous options"
        assert db.get(ApprovedQuestionPool, POOL_ID) is None

    def test_rejecting_everything_is_all_rejected(self, db, batch):
        reject_questions(db, question_ids(batch, *range(10)))
        db.refresh(batch)
        assert batch.status == "all_rejected"

    def test_approved_questions_are_not_rejected(self, db, batch):
        approve_questions(db, question_ids(batch, 0))
        result = reject_questions(db, question_ids(batch, 0))
        assert result.changed == 0
        assert_counters_consistent(db)


class TestUnapprove:
    def test_round_trip_restores_counters(self, db, batch):
        ids = question_ids(batch, 0, 1, 2)
        approve_questions(db, ids, admin_id="admin")
        result = unapprove_questions(db, ids)
        assert result.changed == 3
        db.refresh(batch)
        assert (batch.approved_count, batch.pending_count, batch.rejected_count) == (0, 10, 0)
        assert batch.status == "all_pending"
        assert db.get(ApprovedQuestionPool, POOL_ID).total_questions == 0
        row = db.get(TemplateQuestion, ids[0])
        assert row.status == "pending"
        assert row.approved_at is None
        assert row.approved_by is None
        assert_counters_consistent(db)

    def test_only_approved_ids_are_counted(self, db, batch):
        approve_questions(db, question_ids(batch, 0))
        reject_questions(db, question_ids(batch, 1))
        result = unapprove_questions(db, question_ids(batch, 0, 1, 2))
        assert (result.changed, result.skipped) == (1, 2)
        db.refresh(batch)
        assert (batch.approved_count, batch.pending_count, batch.rejected_count) == (0, 9, 1)
        assert_counters_consistent(db)

    def test_nothing_approved_changes_nothing(self, db, batch):
        result = unapprove_questions(db, question_ids(batch, 0, 1))
        assert result.changed == 0
        db.refresh(batch)
        assert batch.pending_count == 10


class TestBatchStatus:
    @pytest.mark.parametrize(
        "counts,expected",
        [
            ((0, 10, 0, 10), "all_pending"),
            ((10, 0, 0, 10), "all_approved"),
            ((0, 0, 10, 10), "all_rejected"),
            ((4, 6, 0, 10), "partially_approved"),
            ((0, 6, 4, 10), "partially_approved"),
            ((5, 0, 5, 10), "partially_approved"),
        ],
    )
    def test_compute_batch_status(self, counts, expected):
        assert compute_batch_status(*counts) == expected

    def test_stale_status_is_repaired(self, db, batch):
        approve_questions(db, question_ids(batch, 0))
        stale = db.get(TemplateBatch, batch.id)
        stale.status = "all_pending"
        db.commit()
        assert reconcile_batch_statuses(db) == 1
        assert db.get(TemplateBatch, batch.id).status == "partially_approved"
        assert reconcile_batch_statuses(db) == 0

    def test_listing_repairs_stale_status(self, db, batch):
        approve_questions(db, question_ids(batch, *range(10)))
        stale = db.get(TemplateBatch, batch.id)
        stale.status = "partially_approved"
        db.commit()
        (listed,) = list_batches(db, interest="Sports & Games")
        assert listed.status == "all_approved"


class TestUpdateQuestion:
    def test_content_edit_keeps_status_and_counters(self, db, batch):
        qid = question_ids(batch, 0)[0]
        approve_questions(db, [qid])
        row = update_question(db, qid, {"question": "Edited?", "correctIndex": 2})
        assert row.question == "Edited?"
        assert row.correct_index == 2
        assert row.status == "approved"
        assert row.updated_at is not None
        assert db.get(TemplateBatch, batch.id).approved_count == 1

    def test_correct_index_out_of_bounds(self, db, batch):
        with pytest.raises(ValidationError, match="bounds"):
            update_question(db, question_ids(batch, 0)[0], {"correctIndex": 4})

    @pytest.mark.parametrize("field", ["question", "options", "correctIndex", "explanation", "clue"])
    def test_required_field_cannot_be_nulled(self, db, batch, field):
        question_id = question_ids(batch, 0)[0]
        before = db.get(TemplateQuestion, question_id).question
        with pytest.raises(ValidationError, match="cannot be empty"):
            update_question(db, question_id, {field: None})
        db.expire_all()
        row = db.get(TemplateQuestion, question_id)
        assert row.question == before
        assert len(row.options) == 4
        assert row.correct_index is not None

    def test_text_field_must_be_a_string(self, db, batch):
        with pytest.raises(ValidationError, match="must be a string"):
            update_question(db, question_ids(batch, 0)[0], {"clue": 42})

    def test_passage_can_be_cleared(self, db, batch):
        row = update_question(db, question_ids(batch, 0)[0], {"passage": None})
        assert row.passage is None

    def test_options_and_index_checked_together(self, db, batch):
        with pytest.raises(ValidationError):
            update_question(db, question_ids(batch, 0)[0], {"options": ["A", "B", "C"], "correctIndex": 3})

    def test_status_is_not_editable(self, db, batch):
        with pytest.raises(ValidationError):
            update_question(db, question_ids(batch, 0)[0], {"status": "approved"})

    def test_missing_question(self, db):
        with pytest.raises(NotFoundError):
            update_question(db, "missing_q0", {"question": "x"})
