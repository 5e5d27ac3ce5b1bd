"""Print the Supabase schema used by the exam engine, and optionally check a live database for it."""
import argparse
import os
import sys

from dotenv import load_dotenv

from db import get_supabase_uncached

load_dotenv()

SUPABASE_URL = os.getenv("SUPABASE_URL")

# SQL schema
SCHEMA_SQL = """
-- Batches (groups of students)
CREATE TABLE IF NOT EXISTS batches (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    name TEXT NOT NULL,
    is_public BOOLEAN DEFAULT FALSE,
    created_at TIMESTAMPTZ DEFAULT NOW()
);

-- Students
CREATE TABLE IF NOT EXISTS users (
    uid TEXT PRIMARY KEY,
    name TEXT,
    roll TEXT,
    enrolled_batches JSONB DEFAULT '[]'::jsonb,
    created_at TIMESTAMPTZ DEFAULT NOW()
);

-- Exams
CREATE TABLE IF NOT EXISTS exams (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    name TEXT NOT NULL,
    batch_id UUID REFERENCES batches(id) ON DELETE SET NULL,
    file_id UUID,
    status VARCHAR(20) DEFAULT 'live',
    duration_minutes NUMERIC,
    marks_per_question NUMERIC DEFAULT 1,
    negative_marks_per_wrong NUMERIC DEFAULT 0,
    is_practice BOOLEAN DEFAULT FALSE,
    shuffle_questions BOOLEAN DEFAULT FALSE,
    number_of_attempts VARCHAR(20) DEFAULT 'one_time',
    start_at TIMESTAMPTZ,
    end_at TIMESTAMPTZ,
    total_subjects INT,
    mandatory_subjects JSONB DEFAULT '[]'::jsonb,
    optional_subjects JSONB DEFAULT '[]'::jsonb,
    questions JSONB,
    created_at TIMESTAMPTZ DEFAULT NOW()
);

-- Question bank
CREATE TABLE IF NOT EXISTS questions (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    exam_id UUID REFERENCES exams(id) ON DELETE CASCADE,
    file_id UUID,
    question_text TEXT NOT NULL,
    options JSONB,
    option1 TEXT,
    option2 TEXT,
    option3 TEXT,
    option4 TEXT,
    option5 TEXT,
    answer TEXT,
    explanation TEXT,
    subject TEXT,
    question_marks NUMERIC,
    question_image_url TEXT,
    explanation_image_url TEXT,
    created_at TIMESTAMPTZ DEFAULT NOW()
);

-- Attempts (one row per student per exam)
CREATE TABLE IF NOT EXISTS student_exams (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    exam_id UUID NOT NULL REFERENCES exams(id) ON DELETE CASCADE,
    student_id TEXT NOT NULL REFERENCES users(uid) ON DELETE CASCADE,
    score NUMERIC(8,2),
    correct_answers INT DEFAULT 0,
    wrong_answers INT DEFAULT 0,
    unattempted INT DEFAULT 0,
    started_at TIMESTAMPTZ,
    submitted_at TIMESTAMPTZ,
    UNIQUE(student_id, exam_id)
);

-- Per-question responses
CREATE TABLE IF NOT EXISTS student_responses (
    id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    student_exam_id UUID NOT NULL REFERENCES student_exams(id) ON DELETE CASCADE,
    question_id TEXT NOT NULL,
    selected_option TEXT,
    is_correct BOOLEAN,
    marks_obtained NUMERIC(6,2),
    UNIQUE(student_exam_id, question_id)
);

-- Create indexes for performance
CREATE INDEX IF NOT EXISTS idx_questions_exam_id ON questions(exam_id);
CREATE INDEX IF NOT EXISTS idx_questions_file_id ON questions(file_id);
CREATE INDEX IF NOT EXISTS idx_exams_batch_id ON exams(batch_id);
CREATE INDEX IF NOT EXISTS idx_student_exams_exam_id ON student_exams(exam_id);
CREATE INDEX IF NOT EXISTS idx_student_responses_attempt ON student_responses(student_exam_id);
"""

TABLES = ("batches", "users", "exams", "questions", "student_exams", "student_responses")


def schema_statements():
    return [s.strip() for s in SCHEMA_SQL.split(";") if s.strip()]


def check_tables(client) -> dict:
    """{table: True/False} for whether each engine table answers a one-row select."""
    status = {}
    for table in TABLES:
        try:
            client.table(table).select("*").limit(1).execute()
            status[table] = True
        except Exception as e:
            print(f"  ✗ {table}: {e}")
            status[table] = False
    return status


def main(argv=None):
    parser = argparse.ArgumentParser(description="Print the exam engine schema, optionally checking a live database.")
    parser.add_argument("--check", action="store_true", help="Check that every table exists in Supabase")
    args = parser.parse_args(argv)

    print("Exam engine schema")
    print(f"URL: {SUPABASE_URL}")
    statements = schema_statements()
    for i, stmt in enumerate(statements, 1):
        first_line = next(line for line in stmt.splitlines() if not line.startswith("--"))
        print(f"  {i}/{len(statements)}: {first_line[:60]}")

    exit_code = 0
    if args.check:
        status = check_tables(get_supabase_uncached())
        missing = [table for table, ok in status.items() if not ok]
        if not missing:
            print("\n✓ All tables exist")
            return 0
        print(f"\nMissing tables: {', '.join(missing)}")
        exit_code = 1

    print("\nThe Supabase client cannot run DDL. Run this SQL in the Supabase SQL Editor:")
    print(SCHEMA_SQL)
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
