"""
Tests for learner generation runs and quiz set lifecycle.
"""

import asyncio
from datetime import timedelta

import pytest

from engliquest.errors import NotFoundError, ValidationError
from engliquest.models import GenerationRun, QuizSet, utcnow
from engliquest.personalized import (
    approve_all_pending_quiz_sets,
    approve_quiz_set,
    finish_run,
    process_generation_page,
    record_progress,
    regenerate_quiz_set,
    reset_stuck_regenerations,
    run_personalized_generation,
    start_generation,
    summarize_user_quizzes,
)

from mocks.gemini_mocks import FakeGenerator, failing_on

pytestmark = pytest.mark.integration

USER = "learner-1"


def run_full(session_factory, generator):
    return asyncio.run(run_personalized_generation(session_factory, lambda: generator, USER))


class TestStartGeneration:
    def test_resets_run(self, db, learner):
        run = start_generation(db, USER)
        assert (run.status, run.progress, run.total, run.current_batch) == ("pending", 0, 30, 0)
        assert run.interests == learner.interests

    def test_unknown_learner(self, db):
        with pytest.raises(NotFoundError):
            start_generation(db, "nobody")

    def test_learner_without_interests(self, db, learner):
        learner.interests = []
        db.commit()
        with pytest.raises(ValidationError):
            start_generation(db, USER)


class TestRunProgress:
    def test_progress_never_regresses(self, db, learner):
        start_generation(db, USER)
        record_progress(db, USER, 5)
        record_progress(db, USER, 3)
        assert db.get(GenerationRun, USER).progress == 5

    def test_total_change_is_saved_without_progress(self, db, learner):
        start_generation(db, USER)
        record_progress(db, USER, 5)
        record_progress(db, USER, 3, total=25)
        db.expire_all()
        run = db.get(GenerationRun, USER)
        assert (run.progress, run.total) == (5, 25)

    def test_finish_is_idempotent(self, db, learner):
        start_generation(db, USER)
        finish_run(db, USER, "failed", "first error")
        finish_run(db, USER, "completed")
        run = db.get(GenerationRun, USER)
        assert run.status == "failed"
        assert run.error == "first error"

    def test_no_progress_after_terminal_state(self, db, learner):
        start_generation(db, USER)
        finish_run(db, USER, "failed", "boom")
        record_progress(db, USER, 12)
        assert db.get(GenerationRun, USER).progress == 0


class TestRunPersonalizedGeneration:
    def test_full_plan_saves_thirty_quiz_sets(self, session_factory, db, learner):
        generator = FakeGenerator()
        start_generation(db, USER)
        assert run_full(session_factory, generator) == "completed"
        db.expire_all()
        run = db.get(GenerationRun, USER)
        assert (run.status, run.progress, run.total) == ("completed", 30, 30)
        assert run.completed_at is not None
        sets = db.query(QuizSet).filter_by(user_id=USER).all()
        assert len(sets) == 30
        assert all(len(s.questions) == 15 and s.status == "pending" for s in sets)
        assert db.get(QuizSet, "learner-1_A1_ReadingComprehension_easy") is not None
        assert generator.closed

    def test_one_failing_cell_fails_run_without_quiz_sets(self, session_factory, db, learner):
        generator = FakeGenerator(default=failing_on("Target: B2", RuntimeError("quota exceeded")))
        start_generation(db, USER)
        assert run_full(session_factory, generator) == "failed"
        db.expire_all()
        run = db.get(GenerationRun, USER)
        assert run.status == "failed"
        assert "quota exceeded" in run.error
        assert db.query(QuizSet).count() == 0


class TestProcessGenerationPage:
    def test_pages_walk_the_plan(self, db, learner):
        generator = FakeGenerator()
        first = asyncio.run(process_generation_page(db, generator, USER, 0, 5))
        assert len(first.saved) == 5
        assert first.progress == 5
        assert first.next_batch_index == 1
        for index in range(1, 6):
            result = asyncio.run(process_generation_page(db, generator, USER, index, 5))
        assert result.done
        assert result.next_batch_index is None
        run = db.get(GenerationRun, USER)
        assert (run.status, run.progress, run.current_batch) == ("completed", 30, 5)
        assert db.query(QuizSet).count() == 30

    def test_failed_cells_are_skipped(self, db, learner):
        generator = FakeGenerator(default=failing_on("Target: A2", RuntimeError("timeout")))
        result = asyncio.run(process_generation_page(db, generator, USER, 0, 5))
        assert result.failed == 1
        assert len(result.saved) == 4
        assert result.progress == 5

    def test_index_past_plan_reports_done(self, db, learner):
        asyncio.run(process_generation_page(db, FakeGenerator(), USER, 0, 5))
        result = asyncio.run(process_generation_page(db, FakeGenerator(), USER, 6, 5))
        assert result.done
        assert result.next_batch_index is None
        assert result.saved == []
        run = db.get(GenerationRun, USER)
        assert (run.status, run.progress, run.current_batch) == ("in_progress", 5, 0)

    def test_negative_index_is_rejected(self, db, learner):
        with pytest.raises(ValidationError):
            asyncio.run(process_generation_page(db, FakeGenerator(), USER, -1, 5))

    def test_replaying_a_page_keeps_run_completed(self, db, learner):
        generator = FakeGenerator()
        for index in range(6):
            asyncio.run(process_generation_page(db, generator, USER, index, 5))
        calls = len(generator.prompts)
        result = asyncio.run(process_generation_page(db, generator, USER, 2, 5))
        assert result.done
        assert len(generator.prompts) == calls
        db.expire_all()
        run = db.get(GenerationRun, USER)
        assert (run.status, run.progress) == ("completed", 30)
        assert run.completed_at is not None


@pytest.fixture
def quiz_sets(session_factory, db, learner):
    start_generation(db, USER)
    run_full(session_factory, FakeGenerator())
    db.expire_all()
    return db.query(QuizSet).filter_by(user_id=USER).order_by(QuizSet.id).all()


class TestRegenerate:
    def test_replaces_questions_and_keeps_created_at(self, db, quiz_sets):
        target = quiz_sets[0]
        created_at = target.created_at
        approve_quiz_set(db, target.id)
        generator = FakeGenerator()
        result = asyncio.run(regenerate_quiz_set(db, generator, target.id))
        assert result.status == "pending"
        assert result.created_at == created_at
        assert result.regenerated_at is not None
        assert result.approved_at is None
        assert "REGENERATION REQUEST" in generator.prompts[0]

    def test_failure_reverts_to_pending_with_error(self, db, quiz_sets):
        target = quiz_sets[0]
        before = list(target.questions)
        with pytest.raises(RuntimeError):
            asyncio.run(regenerate_quiz_set(db, FakeGenerator(default=RuntimeError("model overloaded")), target.id))
        db.expire_all()
        row = db.get(QuizSet, target.id)
        assert row.status == "pending"
        assert "model overloaded" in row.regeneration_error
        assert row.questions == before

    def test_missing_quiz_set(self, db):
        with pytest.raises(NotFoundError):
            asyncio.run(regenerate_quiz_set(db, FakeGenerator(), "nope"))

    def test_stuck_regenerations_are_reset(self, db, quiz_sets):
        target = quiz_sets[0]
        target.status = "regenerating"
        target.regeneration_requested_at = utcnow() - timedelta(hours=2)
        db.commit()
        assert reset_stuck_regenerations(db) == 1
        assert db.get(QuizSet, target.id).status == "pending"


class TestApprovalAndSummary:
    def test_summary_moves_from_pending_to_approved(self, db, quiz_sets):
        assert summarize_user_quizzes(db, USER)["status"] == "pending"
        approve_quiz_set(db, quiz_sets[0].id)
        summary = summarize_user_quizzes(db, USER)
        assert summary["status"] == "partial"
        assert summary["approved"] == 1
        assert approve_all_pending_quiz_sets(db, USER) == 29
        assert summarize_user_quizzes(db, USER)["status"] == "approved"

    def test_summary_without_generation(self, db):
        summary = summarize_user_quizzes(db, "nobody")
        assert summary["status"] == "no_generation"
        assert summary["total"] == 0
