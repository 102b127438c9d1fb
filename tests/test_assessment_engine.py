import pytest
from sqlalchemy import select

from assessly.core import errors
from assessly.models import orm
from assessly.services.assessments import AssessmentEngine

from conftest import TIMEOUT, multiple_options


@pytest.fixture
def engine_(db, clock):
    return AssessmentEngine(db, timeout=TIMEOUT, clock=clock)


@pytest.fixture
def weighted_test(make_question, make_test):
    """Three questions weighted 1, 2, 2; option "0" is correct on each."""
    q1 = make_question("Q1")
    q2 = make_question("Q2")
    q3 = make_question("Q3", orm.QuestionType.MULTIPLE, multiple_options(correct=("0", "1")))
    test = make_test(questions=[(q1.id, 1), (q2.id, 2), (q3.id, 2)])
    return test, (q1, q2, q3)


def reload_assessment(db, assessment_id):
    db.expire_all()
    return db.get(orm.Assessment, assessment_id)


def answers_of(db, assessment_id):
    db.expire_all()
    return {a.question_id: a for a in db.scalars(select(orm.AssessmentAnswer).where(orm.AssessmentAnswer.assessment_id == assessment_id))}


# ---------- START ----------

def test_start_snapshots_questions_without_answers(engine_, weighted_test, clock):
    test, (q1, q2, q3) = weighted_test
    started = engine_.start(test.id, "Ada")
    assert started.total_questions == 3
    assert [q["id"] for q in started.questions] == [q1.id, q2.id, q3.id]
    assert [q["question_number"] for q in started.questions] == [1, 2, 3]
    assert [q["weight"] for q in started.questions] == [1, 2, 2]
    for q in started.questions:
        for opt in q["options"].values():
            assert opt.keys() == {"text"}
    assert started.started_at == clock.now
    assert started.expires_at == clock.now + TIMEOUT


def test_start_creates_started_row_and_no_answers(db, engine_, weighted_test):
    test, _ = weighted_test
    started = engine_.start(test.id, "Ada")
    row = reload_assessment(db, started.assessment_id)
    assert row.status is orm.AssessmentStatus.STARTED
    assert row.score_percentage is None and row.completed_at is None
    assert answers_of(db, started.assessment_id) == {}


def test_start_unknown_test(engine_):
    with pytest.raises(errors.NotFound):
        engine_.start("missing", "Ada")


def test_start_disabled_test(engine_, make_test):
    test = make_test(is_enabled=False)
    with pytest.raises(errors.TestDisabled):
        engine_.start(test.id, "Ada")


# ---------- RECORD_ANSWER ----------

def test_record_answer_reports_progress_and_keeps_verdict_null(db, engine_, weighted_test):
    test, (q1, q2, _) = weighted_test
    aid = engine_.start(test.id, "Ada").assessment_id
    progress = engine_.record_answer(aid, q1.id, ["0"])
    assert (progress.answered_questions, progress.total_questions) == (1, 3)
    progress = engine_.record_answer(aid, q2.id, [1])
    assert progress.answered_questions == 2
    stored = answers_of(db, aid)
    assert stored[q2.id].selected_options == ["1"]
    assert all(a.is_correct is None for a in stored.values())


def test_record_answer_overwrites_previous_selection(db, engine_, weighted_test, clock):
    test, (q1, _, _) = weighted_test
    aid = engine_.start(test.id, "Ada").assessment_id
    engine_.record_answer(aid, q1.id, ["1"])
    clock.advance(minutes=3)
    progress = engine_.record_answer(aid, q1.id, ["0"])
    assert progress.answered_questions == 1
    stored = answers_of(db, aid)
    assert len(stored) == 1
    assert stored[q1.id].selected_options == ["0"]
    assert stored[q1.id].answered_at == clock.now


def test_record_answer_rejects_question_outside_test(db, engine_, weighted_test, make_question):
    test, _ = weighted_test
    stray = make_question("Stray")
    aid = engine_.start(test.id, "Ada").assessment_id
    with pytest.raises(errors.ValidationError):
        engine_.record_answer(aid, stray.id, ["0"])
    assert answers_of(db, aid) == {}


def test_record_answer_rejects_unknown_options(db, engine_, weighted_test):
    test, (q1, _, _) = weighted_test
    aid = engine_.start(test.id, "Ada").assessment_id
    with pytest.raises(errors.ValidationError) as exc:
        engine_.record_answer(aid, q1.id, ["0", "9"])
    assert "Option 9" in exc.value.errors[0]
    with pytest.raises(errors.ValidationError):
        engine_.record_answer(aid, q1.id, [])
    assert answers_of(db, aid) == {}


def test_record_answer_unknown_assessment(engine_):
    with pytest.raises(errors.NotFound):
        engine_.record_answer("missing", "q", ["0"])


def test_record_answer_after_submit(engine_, weighted_test):
    test, (q1, _, _) = weighted_test
    aid = engine_.start(test.id, "Ada").assessment_id
    engine_.submit(aid)
    with pytest.raises(errors.AlreadyCompleted):
        engine_.record_answer(aid, q1.id, ["0"])


def test_record_answer_on_expired_session_abandons_it(db, engine_, weighted_test, clock):
    test, (q1, _, _) = weighted_test
    aid = engine_.start(test.id, "Ada").assessment_id
    clock.advance(hours=2, seconds=1)
    with pytest.raises(errors.Expired):
        engine_.record_answer(aid, q1.id, ["0"])
    assert reload_assessment(db, aid).status is orm.AssessmentStatus.ABANDONED
    assert answers_of(db, aid) == {}
    with pytest.raises(errors.Abandoned):
        engine_.record_answer(aid, q1.id, ["0"])


def test_exactly_at_timeout_is_still_live(engine_, weighted_test, clock):
    test, (q1, _, _) = weighted_test
    aid = engine_.start(test.id, "Ada").assessment_id
    clock.advance(hours=2)
    assert engine_.record_answer(aid, q1.id, ["0"]).answered_questions == 1


# ---------- SUBMIT ----------

def test_unanswered_questions_count_against_score(db, engine_, weighted_test):
    test, (q1, _, _) = weighted_test
    aid = engine_.start(test.id, "Ada").assessment_id
    engine_.record_answer(aid, q1.id, ["0"])
    result = engine_.submit(aid)
    assert result.score_percentage == 20.00
    assert result.total_questions == 3
    assert result.correct_count == 1
    assert not result.passed
    row = reload_assessment(db, aid)
    assert row.status is orm.AssessmentStatus.COMPLETED
    assert row.score_percentage == 20.00
    assert answers_of(db, aid)[q1.id].is_correct is True


def test_all_correct_scores_100(engine_, weighted_test):
    test, (q1, q2, q3) = weighted_test
    aid = engine_.start(test.id, "Ada").assessment_id
    engine_.record_answer(aid, q1.id, ["0"])
    engine_.record_answer(aid, q2.id, ["0"])
    engine_.record_answer(aid, q3.id, ["1", "0"])
    result = engine_.submit(aid)
    assert result.score_percentage == 100.00
    assert result.passed


def test_only_latest_selection_is_scored(db, engine_, weighted_test):
    test, (q1, q2, _) = weighted_test
    aid = engine_.start(test.id, "Ada").assessment_id
    engine_.record_answer(aid, q2.id, ["0"])
    engine_.record_answer(aid, q2.id, ["2"])
    engine_.record_answer(aid, q1.id, ["1"])
    engine_.record_answer(aid, q1.id, ["0"])
    assert engine_.submit(aid).score_percentage == 20.00
    stored = answers_of(db, aid)
    assert stored[q1.id].is_correct is True
    assert stored[q2.id].is_correct is False


def test_submit_with_no_questions_scores_zero(engine_, make_test):
    test = make_test()
    aid = engine_.start(test.id, "Ada").assessment_id
    result = engine_.submit(aid)
    assert result.score_percentage == 0.0
    assert result.total_questions == 0


def test_second_submit_is_rejected_and_changes_nothing(db, engine_, weighted_test, clock):
    test, (q1, _, _) = weighted_test
    aid = engine_.start(test.id, "Ada").assessment_id
    engine_.record_answer(aid, q1.id, ["0"])
    first = engine_.submit(aid)
    clock.advance(minutes=5)
    with pytest.raises(errors.AlreadyCompleted):
        engine_.submit(aid)
    row = reload_assessment(db, aid)
    assert row.score_percentage == first.score_percentage
    assert row.completed_at == first.completed_at


def test_submit_after_expiry(db, engine_, weighted_test, clock):
    test, _ = weighted_test
    aid = engine_.start(test.id, "Ada").assessment_id
    clock.advance(hours=3)
    with pytest.raises(errors.Expired):
        engine_.submit(aid)
    row = reload_assessment(db, aid)
    assert row.status is orm.AssessmentStatus.ABANDONED
    assert row.score_percentage is None


def test_score_survives_test_edits(db, engine_, weighted_test):
    test, (q1, _, _) = weighted_test
    aid = engine_.start(test.id, "Ada").assessment_id
    engine_.record_answer(aid, q1.id, ["0"])
    engine_.submit(aid)
    db.execute(orm.TestQuestion.__table__.delete().where(orm.TestQuestion.test_id == test.id))
    db.commit()
    assert reload_assessment(db, aid).score_percentage == 20.00


# ---------- VERIFY ----------

def test_verify_live_assessment(engine_, weighted_test, clock):
    test, _ = weighted_test
    aid = engine_.start(test.id, "Ada").assessment_id
    clock.advance(minutes=30)
    result = engine_.verify(aid)
    assert result.valid
    assert result.status is orm.AssessmentStatus.STARTED
    assert result.remaining_seconds == 90 * 60


def test_verify_expired_performs_transition(db, engine_, weighted_test, clock):
    test, _ = weighted_test
    aid = engine_.start(test.id, "Ada").assessment_id
    clock.advance(hours=2, minutes=1)
    with pytest.raises(errors.Expired):
        engine_.verify(aid)
    assert reload_assessment(db, aid).status is orm.AssessmentStatus.ABANDONED


def test_verify_completed(engine_, weighted_test):
    test, _ = weighted_test
    aid = engine_.start(test.id, "Ada").assessment_id
    engine_.submit(aid)
    with pytest.raises(errors.AlreadyCompleted):
        engine_.verify(aid)


def test_verify_unknown(engine_):
    with pytest.raises(errors.NotFound):
        engine_.verify("missing")


# ---------- RACES AND ATOMICITY ----------

class ClaimRace:
    """Runs ``interloper`` right after the engine's liveness check, before its claim."""

    def __init__(self, engine, interloper):
        self.engine = engine
        self.interloper = interloper
        self._ensure_live = engine._ensure_live

    def __call__(self, assessment, now):
        self._ensure_live(assessment, now)
        self.interloper()


def test_submit_losing_race_reports_winner_and_keeps_its_score(db, session_factory, clock, weighted_test, monkeypatch):
    test, (q1, _, _) = weighted_test
    engine = AssessmentEngine(db, timeout=TIMEOUT, clock=clock)
    aid = engine.start(test.id, "Ada").assessment_id
    engine.record_answer(aid, q1.id, ["0"])

    other = session_factory()
    winner = {}

    def submit_elsewhere():
        winner["result"] = AssessmentEngine(other, timeout=TIMEOUT, clock=clock).submit(aid)

    monkeypatch.setattr(engine, "_ensure_live", ClaimRace(engine, submit_elsewhere))
    with pytest.raises(errors.AlreadyCompleted):
        engine.submit(aid)
    other.close()

    row = reload_assessment(db, aid)
    assert winner["result"].score_percentage == 20.00
    assert row.status is orm.AssessmentStatus.COMPLETED
    assert row.score_percentage == 20.00
    assert row.completed_at == winner["result"].completed_at


def test_submit_losing_race_to_expiry_reports_abandoned(db, session_factory, clock, weighted_test, monkeypatch):
    test, _ = weighted_test
    engine = AssessmentEngine(db, timeout=TIMEOUT, clock=clock)
    aid = engine.start(test.id, "Ada").assessment_id

    def abandon_elsewhere():
        other = session_factory()
        other.execute(
            orm.Assessment.__table__.update()
            .where(orm.Assessment.id == aid)
            .values(status=orm.AssessmentStatus.ABANDONED)
        )
        other.commit()
        other.close()

    monkeypatch.setattr(engine, "_ensure_live", ClaimRace(engine, abandon_elsewhere))
    with pytest.raises(errors.Abandoned):
        engine.submit(aid)
    row = reload_assessment(db, aid)
    assert row.status is orm.AssessmentStatus.ABANDONED
    assert row.score_percentage is None and row.completed_at is None


def test_submit_failure_leaves_no_partial_state(db, engine_, weighted_test, monkeypatch):
    test, (q1, q2, _) = weighted_test
    aid = engine_.start(test.id, "Ada").assessment_id
    engine_.record_answer(aid, q1.id, ["0"])
    engine_.record_answer(aid, q2.id, ["1"])

    def broken(*args):
        raise RuntimeError("scoring backend down")

    monkeypatch.setattr("assessly.services.assessments.score_percentage", broken)
    with pytest.raises(RuntimeError):
        engine_.submit(aid)

    row = reload_assessment(db, aid)
    assert row.status is orm.AssessmentStatus.STARTED
    assert row.completed_at is None and row.score_percentage is None
    assert all(a.is_correct is None for a in answers_of(db, aid).values())

    monkeypatch.undo()
    assert engine_.submit(aid).score_percentage == 20.00


# ---------- PRE-EXISTING VISIBILITY VIOLATIONS ----------

def test_incompatible_link_written_directly_is_tolerated(db, engine_, make_question, make_test):
    hidden = make_question("Hidden", visibility=orm.Visibility.PROTECTED)
    test = make_test(visibility=orm.Visibility.PUBLIC)
    # bypasses attach_questions, which would refuse this pairing
    db.add(orm.TestQuestion(test_id=test.id, question_id=hidden.id, weight=3))
    db.commit()

    started = engine_.start(test.id, "Ada")
    assert [q["id"] for q in started.questions] == [hidden.id]
    engine_.record_answer(started.assessment_id, hidden.id, ["0"])
    assert engine_.submit(started.assessment_id).score_percentage == 100.0
