from __future__ import annotations

REVIEW_RULES_DDL = """
CREATE TABLE IF NOT EXISTS review_rules (
    rule_id TEXT PRIMARY KEY,
    name VARCHAR(255) NOT NULL UNIQUE,
    rule_type TEXT NOT NULL,
    applicable_contract_types JSONB NOT NULL,
    applicable_clause_types JSONB NOT NULL,
    mode_ordinal SMALLINT NOT NULL,
    enabled BOOLEAN NOT NULL DEFAULT TRUE,
    category TEXT,
    payload JSONB NOT NULL,
    created_at TIMESTAMPTZ NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_review_rules_mode ON review_rules(enabled, mode_ordinal);
CREATE INDEX IF NOT EXISTS idx_review_rules_category ON review_rules(category);
"""

EXTRACTION_RUNS_DDL = """
CREATE TABLE IF NOT EXISTS extraction_runs (
    run_id TEXT PRIMARY KEY,
    contract_id TEXT NOT NULL,
    requested_by TEXT NOT NULL,
    contract_type TEXT NOT NULL DEFAULT '',
    status TEXT NOT NULL,
    rule_snapshot JSONB NOT NULL DEFAULT '[]'::jsonb,
    error_message TEXT,
    outcome_summary TEXT,
    started_at TIMESTAMPTZ NOT NULL,
    completed_at TIMESTAMPTZ
);
CREATE UNIQUE INDEX IF NOT EXISTS uq_extraction_runs_active_contract
    ON extraction_runs(contract_id)
    WHERE status IN ('pending', 'in_progress');
"""

EXTRACTION_AUDIT_LOGS_DDL = """
CREATE TABLE IF NOT EXISTS extraction_audit_logs (
    seq BIGSERIAL,
    audit_id TEXT PRIMARY KEY,
    run_id TEXT NOT NULL,
    contract_id TEXT NOT NULL,
    action TEXT NOT NULL,
    transition JSONB NOT NULL,
    actor_id TEXT,
    occurred_at TIMESTAMPTZ NOT NULL,
    duration_ms BIGINT,
    prev_hash TEXT NOT NULL DEFAULT '',
    audit_hash TEXT NOT NULL DEFAULT '',
    payload JSONB NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_extraction_audit_logs_contract ON extraction_audit_logs(contract_id, occurred_at);
CREATE INDEX IF NOT EXISTS idx_extraction_audit_logs_run ON extraction_audit_logs(run_id, occurred_at);
"""

ALL_DDL = (REVIEW_RULES_DDL, EXTRACTION_RUNS_DDL, EXTRACTION_AUDIT_LOGS_DDL)
