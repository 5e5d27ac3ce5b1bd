"""Exam engine: multi-page Streamlit front end to take an exam, review it and see the leaderboard."""
import logging
import math
import sys
from pathlib import Path
from datetime import datetime, timezone

# Ensure project root is in path
project_root = Path(__file__).resolve().parent
if str(project_root) not in sys.path:
    sys.path.insert(0, str(project_root))

import streamlit as st

from db import get_exam_store, get_snapshot_store, list_exams
from engine import RESULTS_PER_PAGE, TICK_INTERVAL_SECONDS
from examcore.database import exam_question_bank
from examcore.errors import ExamError, StoreError
from examcore.leaderboard import build_leaderboard, summarize
from examcore.models import Student
from examcore.normalizer import ANSWER_LETTERS
from examcore.reconciler import FILTERS, review_attempt, filter_items
from examcore.session import ExamSession, SessionState
from examcore.snapshots import AttemptSnapshots
from examcore.timer import format_duration

logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

PAGES = ["Take Exam", "Review", "Leaderboard"]

st.set_page_config(page_title="Exam Engine", layout="wide")
st.sidebar.title("Exam Engine")
default_page = st.query_params.get("page", PAGES[0])
if default_page not in PAGES:
    default_page = PAGES[0]
page = st.sidebar.radio("Navigate", PAGES, index=PAGES.index(default_page), label_visibility="collapsed")

# Identity comes from the hosting app; here it is typed in.
uid = st.sidebar.text_input("Student id", value=st.session_state.get("student_uid", ""))
st.session_state["student_uid"] = uid
student = Student(uid=uid or None)

try:
    store = get_exam_store()
    exam_rows = list_exams().data or []
except Exception as e:
    st.error(f"Could not reach the database. Check .env (SUPABASE_URL, SUPABASE_KEY). {e}")
    st.stop()

if not exam_rows:
    st.info("No exams available.")
    st.stop()

exam_names = {str(row["id"]): row.get("name") or str(row["id"]) for row in exam_rows}
exam_id = st.sidebar.selectbox("Exam", list(exam_names), format_func=lambda i: exam_names[i])

try:
    exam = store.fetch_exam_config(exam_id)
except StoreError as e:
    st.error(f"Could not load exam: {e}")
    st.stop()

snapshots = AttemptSnapshots(get_snapshot_store(), student.uid, exam.id)


def show_notices(session: ExamSession):
    for notice in session.drain_notices():
        text = f"{notice.title}: {notice.message}" if notice.message else notice.title
        icon = {"info": "ℹ️", "warning": "⚠️", "error": "❌"}[notice.level]
        st.toast(text, icon=icon)


def get_session() -> ExamSession:
    key = f"session_{student.uid or 'anonymous'}_{exam.id}"
    if key not in st.session_state:
        session = ExamSession(exam, student, store, snapshots)
        session.open()
        st.session_state[key] = session
    return st.session_state[key]


# ----- Take Exam -----
if page == "Take Exam":
    st.header(exam.name or "Exam")
    session = get_session()
    show_notices(session)

    if session.state == SessionState.UNAUTHORIZED:
        st.error("You are not allowed to take this exam. Log in and make sure you are enrolled in its batch.")
        st.stop()

    if session.state in (SessionState.NOT_STARTED, SessionState.AWAITING_SUBJECT_SELECTION):
        minutes = exam.duration_minutes or 0
        st.caption(
            f"{minutes:g} minutes · +{exam.marks_per_question or 1:g} per correct · "
            f"-{exam.negative_marks_per_wrong or 0:g} per wrong"
        )
        choices = []
        if session.state == SessionState.AWAITING_SUBJECT_SELECTION:
            st.write("**Mandatory subjects:** " + ", ".join(c.name or c.id for c in exam.mandatory_subjects))
            required = exam.required_optional_count
            if required:
                choices = st.multiselect(
                    f"Choose {required} optional subject(s)",
                    [c.id for c in exam.optional_subjects],
                    format_func=lambda i: (exam.find_subject(i).name or i),
                    max_selections=required,
                )
        if st.button("Start exam", type="primary"):
            try:
                session.start(choices)
                st.rerun()
            except ExamError as e:
                st.error(str(e))
        st.stop()

    if session.state == SessionState.SUBMITTED:
        result = session.result
        st.success("Exam submitted.")
        col1, col2, col3, col4 = st.columns(4)
        col1.metric("Score", f"{result.rounded_score}")
        col2.metric("Correct", result.correct)
        col3.metric("Wrong", result.wrong)
        col4.metric("Unattempted", result.unattempted)
        if not session.remote_saved:
            st.warning("Your result is saved on this device only.")
        if st.button("Review answers"):
            st.query_params["page"] = "Review"
            st.rerun()
        st.stop()

    @st.fragment(run_every=TICK_INTERVAL_SECONDS)
    def countdown():
        tick = session.tick()
        show_notices(session)
        if tick is None:
            if session.state == SessionState.SUBMITTED:
                st.rerun(scope="app")
            st.metric("Time left", "Untimed")
            return
        st.metric("Time left", format_duration(tick.remaining))

    with st.sidebar:
        countdown()
        section = session.section_questions()
        st.progress(session.attempted_count / len(section) if section else 0)
        st.caption(f"{session.attempted_count} answered · {session.unattempted_count} left · "
                   f"{len(session.marked_for_review)} marked")

    if session.subject_order:
        tabs = ["All"] + session.subject_order if not exam.is_custom else session.subject_order
        current = session.current_subject or "All"
        picked = st.radio("Subject", tabs, index=tabs.index(current), horizontal=True)
        if picked != current:
            session.select_subject(None if picked == "All" else picked)
            st.rerun()

    offset = session.page_index * session.questions_per_page
    for number, q in enumerate(session.page_questions(), start=offset + 1):
        status = session.answer_status(q.id)
        st.subheader(f"{number}. {q.text}")
        for image in q.images:
            st.image(image)
        selected = session.answers.get(q.id)
        cols = st.columns(len(q.options) + 1)
        for i, option in enumerate(q.options):
            label = f"{ANSWER_LETTERS[i]}. {option}"
            if cols[i].button(label, key=f"opt_{q.id}_{i}", disabled=selected is not None,
                              type="primary" if selected == i else "secondary"):
                session.answer(q.id, i)
                st.rerun()
        review_label = "Unmark review" if status == "marked" else "Mark for review"
        if cols[-1].button(review_label, key=f"review_{q.id}"):
            session.toggle_review(q.id)
            st.rerun()

    col1, col2, col3 = st.columns([1, 1, 2])
    with col1:
        if st.button("Previous"):
            session.previous_page()
            st.rerun()
    with col2:
        if st.button("Next", disabled=session.is_last_page_of_exam):
            session.next_page()
            st.rerun()
    with col3:
        if st.button("Submit exam", type="primary"):
            session.submit()
            st.rerun()

# ----- Review -----
elif page == "Review":
    st.header(f"Review: {exam.name}")
    try:
        bank = exam_question_bank(exam, store)
    except StoreError as e:
        st.error(f"Could not load questions: {e}")
        st.stop()

    report = review_attempt(exam, bank, student, store, snapshots, now=datetime.now(timezone.utc))
    if report.source == "none":
        st.info("No attempt found for this exam.")
        st.stop()
    if report.source == "local":
        st.caption("Showing answers saved on this device.")

    col1, col2, col3, col4 = st.columns(4)
    col1.metric("Score", f"{report.display_score:.2f}")
    col2.metric("Correct", report.correct)
    col3.metric("Wrong", report.wrong)
    col4.metric("Skipped", report.unattempted)
    st.caption(f"+{report.marks_from_correct} from correct · -{report.negative_marks} negative marking")

    if not student.is_guest:
        rank = store.fetch_live_rank(exam.id, student.uid)
        if rank and rank["rank"]:
            st.metric("Rank", f"{rank['rank']} / {rank['total']}")

    kind = st.radio("Show", FILTERS, horizontal=True, format_func=str.capitalize)
    for item in filter_items(report, kind):
        q = item.question
        st.subheader(q.text)
        for i, option in enumerate(q.options):
            label = f"{ANSWER_LETTERS[i]}. {option}"
            if i == q.answer:
                st.success(f"✓ {label}")
            elif i == item.selected:
                st.error(f"✗ {label}")
            else:
                st.write(f"○ {label}")
        if q.explanation:
            st.info(q.explanation)

# ----- Leaderboard -----
elif page == "Leaderboard":
    st.header(f"Leaderboard: {exam.name}")
    try:
        rows = store.fetch_results(exam.id)
    except StoreError as e:
        st.error(f"Could not load results: {e}")
        st.stop()

    board = build_leaderboard(exam, rows)
    view = st.radio("Ranking", ["Official", "All attempts"], horizontal=True)
    entries = board.official if view == "Official" else board.everyone
    summary = summarize(entries)

    col1, col2, col3, col4 = st.columns(4)
    col1.metric("Participants", summary.participants)
    col2.metric("Average", summary.average)
    col3.metric("Highest", summary.highest)
    col4.metric("Lowest", summary.lowest)

    n_pages = max(1, math.ceil(len(entries) / RESULTS_PER_PAGE))
    page_no = st.number_input("Page", min_value=1, max_value=n_pages, value=1, step=1) if n_pages > 1 else 1
    start = (page_no - 1) * RESULTS_PER_PAGE
    st.dataframe(
        [
            {
                "Rank": e.rank,
                "Name": e.name,
                "Roll": e.roll,
                "Score": e.score,
                "Correct": e.correct_answers,
                "Wrong": e.wrong_answers,
                "Time": e.time_taken,
            }
            for e in entries[start:start + RESULTS_PER_PAGE]
        ],
        use_container_width=True,
        hide_index=True,
    )
