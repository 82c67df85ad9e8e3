"""Tests for the engine tracer decorator."""

from uuid import uuid4

from approval_engines.conditions import route_step
from approval_engines.tracer import TRACE_MESSAGE, compute_input_fingerprint
from tests.factories import cond, make_step


class TestFingerprint:

    def test_equal_inputs_equal_fingerprints(self):
        step = make_step(conditions=[cond("total_amount", "gt", "100", "require")])
        kwargs = {"step": step, "payload": {"total_amount": "250"}}

        assert compute_input_fingerprint(("step", "payload"), kwargs) == \
            compute_input_fingerprint(("step", "payload"), dict(kwargs))

    def test_payload_changes_fingerprint(self):
        step = make_step()
        a = compute_input_fingerprint(("step", "payload"), {"step": step, "payload": {"total_amount": "1"}})
        b = compute_input_fingerprint(("step", "payload"), {"step": step, "payload": {"total_amount": "2"}})

        assert a != b

    def test_missing_fields_count_as_null(self):
        fp = compute_input_fingerprint(("approvers",), {})

        assert fp == compute_input_fingerprint(("approvers",), {"approvers": None})
        assert len(fp) == 16

    def test_sets_are_order_free(self):
        ids = [uuid4() for _ in range(5)]

        assert compute_input_fingerprint(("ids",), {"ids": frozenset(ids)}) == \
            compute_input_fingerprint(("ids",), {"ids": frozenset(reversed(ids))})


class TestTraceRecord:

    def test_engine_call_emits_trace(self, captured_logs):
        route_step(step=make_step(), payload={})

        traces = [r for r in captured_logs() if r["message"] == TRACE_MESSAGE]
        assert len(traces) == 1
        assert traces[0]["engine_name"] == "condition_routing"
        assert traces[0]["function"] == "route_step"
        assert len(traces[0]["input_fingerprint"]) == 16
