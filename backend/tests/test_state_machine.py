"""
Tests for role-aware transition legality, upload rules and the
status notification fan-out table.
"""
import pytest
from types import SimpleNamespace

from app.models.db_models import FilePhase, OrderStatus, UserRole
from app.services.workflow.state_machine import state_machine
from app.services.workflow.effects import STATUS_EFFECTS, resolve_effects


# =============================================================================
# TEST: TRANSITION LEGALITY
# =============================================================================

class TestCanTransition:

    def test_operator_may_set_any_other_status(self):
        for current in OrderStatus:
            for target in OrderStatus:
                if current == target:
                    continue
                allowed, _ = state_machine.can_transition(UserRole.SUPER_AGENT, current, target)
                assert allowed, f"{current} -> {target}"

    def test_no_op_transition_rejected_for_everyone(self):
        for role in UserRole:
            allowed, reason = state_machine.can_transition(role, OrderStatus.IN_PROGRESS, OrderStatus.IN_PROGRESS)
            assert not allowed
            assert "already" in reason

    def test_super_worker_pairs(self):
        assert state_machine.can_transition(
            UserRole.SUPER_WORKER, OrderStatus.WORKER_DRAFT, OrderStatus.FINAL_PAYMENT_APPROVAL)[0]
        assert state_machine.can_transition(
            UserRole.SUPER_WORKER, OrderStatus.REQUESTED_CHANGES, OrderStatus.IN_PROGRESS)[0]
        assert not state_machine.can_transition(
            UserRole.SUPER_WORKER, OrderStatus.FINAL_PAYMENT_APPROVAL, OrderStatus.COMPLETED)[0]

    def test_student_cannot_approve_drafts(self):
        allowed, reason = state_machine.can_transition(
            UserRole.STUDENT, OrderStatus.WORKER_DRAFT, OrderStatus.FINAL_PAYMENT_APPROVAL)
        assert not allowed
        assert "student" in reason

    @pytest.mark.parametrize("proposal", [OrderStatus.WORD_COUNT_CHANGE, OrderStatus.DEADLINE_CHANGE])
    def test_student_may_answer_proposals(self, proposal):
        assert state_machine.can_transition(UserRole.STUDENT, proposal, OrderStatus.IN_PROGRESS)[0]
        assert state_machine.can_transition(UserRole.STUDENT, proposal, OrderStatus.DECLINED)[0]
        assert not state_machine.can_transition(UserRole.STUDENT, proposal, OrderStatus.COMPLETED)[0]

    @pytest.mark.parametrize("role", [UserRole.WORKER, UserRole.AGENT])
    def test_worker_and_agent_have_no_plain_transitions(self, role):
        for current in OrderStatus:
            for target in OrderStatus:
                assert not state_machine.can_transition(role, current, target)[0]

    def test_terminal_statuses(self):
        assert state_machine.is_terminal(OrderStatus.COMPLETED)
        assert state_machine.is_terminal(OrderStatus.REFUND)
        assert not state_machine.is_terminal(OrderStatus.FINAL_PAYMENT_APPROVAL)


# =============================================================================
# TEST: UPLOAD RULES
# =============================================================================

class TestCanUpload:

    def test_worker_draft_from_in_progress(self):
        assert state_machine.can_upload(UserRole.WORKER, OrderStatus.IN_PROGRESS, FilePhase.WORKER_DRAFT)[0]
        assert state_machine.forced_status(FilePhase.WORKER_DRAFT) == OrderStatus.WORKER_DRAFT

    def test_student_cannot_upload_drafts(self):
        assert not state_machine.can_upload(UserRole.STUDENT, OrderStatus.IN_PROGRESS, FilePhase.WORKER_DRAFT)[0]

    def test_review_only_after_drafts(self):
        assert not state_machine.can_upload(
            UserRole.SUPER_WORKER, OrderStatus.IN_PROGRESS, FilePhase.SUPER_WORKER_REVIEW)[0]
        assert state_machine.can_upload(
            UserRole.SUPER_WORKER, OrderStatus.WORKER_DRAFT, FilePhase.SUPER_WORKER_REVIEW)[0]

    def test_final_files_are_operator_only(self):
        assert not state_machine.can_upload(
            UserRole.SUPER_WORKER, OrderStatus.FINAL_PAYMENT_APPROVAL, FilePhase.FINAL_APPROVED)[0]
        assert state_machine.can_upload(
            UserRole.SUPER_AGENT, OrderStatus.FINAL_PAYMENT_APPROVAL, FilePhase.FINAL_APPROVED)[0]
        assert state_machine.forced_status(FilePhase.FINAL_APPROVED) == OrderStatus.COMPLETED

    def test_closed_orders_accept_no_uploads(self):
        for status in (OrderStatus.DECLINED, OrderStatus.REFUND):
            assert not state_machine.can_upload(UserRole.SUPER_AGENT, status, FilePhase.FINAL_APPROVED)[0]

    def test_originals_only_at_submission(self):
        allowed, _ = state_machine.can_upload(UserRole.SUPER_AGENT, OrderStatus.IN_PROGRESS, FilePhase.STUDENT_ORIGINAL)
        assert not allowed
        assert state_machine.forced_status(FilePhase.STUDENT_ORIGINAL) is None


# =============================================================================
# TEST: FAN-OUT TABLE
# =============================================================================

def make_order(**overrides):
    fields = dict(id="AB12C", student_id="st-1", agent_id="ag-1", super_worker_id="sw-1", worker_id="wk-1")
    fields.update(overrides)
    return SimpleNamespace(**fields)


class TestStatusEffects:

    def test_every_status_has_effects(self):
        assert set(STATUS_EFFECTS) == set(OrderStatus)

    def test_completed_notifies_student_agent_and_operator(self):
        queued = resolve_effects(make_order(), OrderStatus.COMPLETED, ["op-1"])
        assert {(q.user_id, q.template_key) for q in queued} == {
            ("st-1", "order_completed"),
            ("ag-1", "order_completed_agent"),
            ("op-1", "order_completed_operator"),
        }

    def test_missing_recipients_are_skipped(self):
        queued = resolve_effects(make_order(agent_id=None), OrderStatus.COMPLETED, [])
        assert [q.user_id for q in queued] == ["st-1"]

    def test_each_user_notified_once(self):
        # Operator who is also the referring agent
        order = make_order(agent_id="op-1")
        queued = resolve_effects(order, OrderStatus.DECLINED, ["op-1"])
        assert [q.user_id for q in queued] == ["st-1", "op-1"]

    def test_final_payment_approval_messages(self):
        queued = resolve_effects(make_order(), OrderStatus.FINAL_PAYMENT_APPROVAL, ["op-1"])
        assert {(q.user_id, q.template_key) for q in queued} == {
            ("op-1", "final_payment_approval"),
            ("st-1", "final_review"),
        }

    def test_proposal_statuses_carry_change_variables(self):
        queued = resolve_effects(make_order(), OrderStatus.DEADLINE_CHANGE, ["op-1"])
        assert all(q.variables["change_description"] == "deadline" for q in queued)
        assert all(q.variables["price_info"] == "" for q in queued)

    def test_extra_variables_override_defaults(self):
        queued = resolve_effects(make_order(), OrderStatus.WORD_COUNT_CHANGE, ["op-1"],
                                 {"change_description": "word count to 1000"})
        assert queued[0].variables["change_description"] == "word count to 1000"
        assert queued[0].variables["order_id"] == "AB12C"
