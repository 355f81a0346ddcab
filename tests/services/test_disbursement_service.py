"""
Tests for DisbursementService -- DV creation, draft editing and cancellation.

Covers:
- create_dv(): DV number format and per-year sequence, initial status,
  input validation, obligation linking and the obligation ceiling
- Drafts: submit=False, update_dv() field rules, submit_dv()
- cancel_dv(): allowed states, stage skipping, outstanding payment cancelled
"""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from fms_kernel.domain.numbering import parse_dv_number
from fms_kernel.domain.payment import PaymentStatus
from fms_kernel.domain.workflow import DVStatus, PaymentMode, StageStatus
from fms_kernel.exceptions import (
    BudgetExceededError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from fms_kernel.selectors.disbursement_selector import DisbursementSelector
from fms_kernel.selectors.payment_selector import PaymentSelector
from tests.conftest import FISCAL_YEAR


@pytest.fixture
def dv_selector(session):
    return DisbursementSelector(session)


class TestCreateDV:

    def test_first_dv_number(self, create_dv):
        dv = create_dv()

        assert dv.dv_no == f"0001-03-{FISCAL_YEAR}"
        assert dv.status is DVStatus.PENDING_DIVISION

    def test_numbers_are_sequential(self, create_dv):
        numbers = [create_dv().dv_no for _ in range(3)]
        assert [parse_dv_number(n).serial for n in numbers] == [1, 2, 3]

    def test_month_taken_from_dv_date(self, create_dv):
        create_dv(dv_date=date(FISCAL_YEAR, 3, 1))
        june = create_dv(dv_date=date(FISCAL_YEAR, 6, 30))

        assert june.dv_no == f"0002-06-{FISCAL_YEAR}"

    def test_sequence_restarts_per_fiscal_year(self, create_dv):
        create_dv()
        next_year = create_dv(dv_date=date(FISCAL_YEAR + 1, 1, 5))

        assert next_year.dv_no == f"0001-01-{FISCAL_YEAR + 1}"

    def test_persisted_fields(self, create_dv, dv_selector, budget):
        created = create_dv(amount=Decimal("2500.5"), payee_tin="123-456-789")

        dv = dv_selector.get_dv(created.id)

        assert dv.dv_no == created.dv_no
        assert dv.amount == Decimal("2500.50")
        assert dv.fund_cluster_id == budget.fund_cluster_id
        assert dv.fiscal_year == FISCAL_YEAR
        assert dv.payment_mode is PaymentMode.MDS_CHECK
        assert dv.payee_tin == "123-456-789"

    @pytest.mark.parametrize(
        "overrides, field",
        [
            ({"amount": Decimal("0")}, "amount"),
            ({"amount": 12.5}, "amount"),
            ({"payee_name": "  "}, "payee_name"),
            ({"particulars": ""}, "particulars"),
            ({"payment_mode": "barter"}, "payment_mode"),
        ],
    )
    def test_invalid_input(self, disbursements, budget, admin_actor, overrides, field):
        args = {
            "fund_cluster_id": budget.fund_cluster_id,
            "object_expenditure_id": budget.object_of_expenditure_id,
            "payee_name": "Payee",
            "particulars": "Particulars",
            "amount": Decimal("100.00"),
            "payment_mode": "ada",
            "actor": admin_actor,
        }
        args.update(overrides)

        result = disbursements.create_dv(**args)

        assert isinstance(result.error, ValidationError)
        assert result.error.field == field

    def test_unknown_fund_cluster(self, disbursements, budget, admin_actor):
        result = disbursements.create_dv(
            uuid4(), budget.object_of_expenditure_id,
            "Payee", "Particulars", Decimal("1.00"), "ada", admin_actor,
        )
        assert isinstance(result.error, NotFoundError)
        assert result.error.entity_type == "FundCluster"

    def test_failed_create_does_not_consume_number(self, disbursements, create_dv, budget, admin_actor):
        disbursements.create_dv(
            budget.fund_cluster_id, uuid4(),
            "Payee", "Particulars", Decimal("1.00"), "ada", admin_actor,
        )
        assert create_dv().dv_no == f"0001-03-{FISCAL_YEAR}"

    def test_audit_record(self, create_dv, audit_sink, admin_actor):
        dv = create_dv()

        record = audit_sink.records[-1]
        assert record.action == "create_dv"
        assert record.entity_id == dv.id
        assert record.new_values["dv_no"] == dv.dv_no
        assert record.new_values["status"] == "pending_division"


class TestObligationLink:

    @pytest.fixture
    def approved_obligation(self, ledger, budget, admin_actor):
        obligation = ledger.create_obligation(
            budget.allotment_id, "ABC Office Supplies", None,
            Decimal("20000.00"), admin_actor,
        ).unwrap()
        return ledger.approve_obligation(obligation.id, admin_actor).unwrap()

    def test_link_to_approved_obligation(self, create_dv, dv_selector, approved_obligation):
        created = create_dv(
            obligation_id=approved_obligation.id,
            ors_burs_no=approved_obligation.ors_number,
        )

        dv = dv_selector.get_dv(created.id)
        assert dv.obligation_id == approved_obligation.id
        assert dv.ors_burs_no == approved_obligation.ors_number

    def test_pending_obligation_refused(self, disbursements, ledger, budget, admin_actor):
        pending = ledger.create_obligation(
            budget.allotment_id, "Payee", None, Decimal("100.00"), admin_actor,
        ).unwrap()

        result = disbursements.create_dv(
            budget.fund_cluster_id, budget.object_of_expenditure_id,
            "Payee", "Particulars", Decimal("100.00"), "ada", admin_actor,
            obligation_id=pending.id,
        )
        assert isinstance(result.error, StateConflictError)
        assert result.error.current_status == "pending"

    def test_amount_above_obligation_refused(self, disbursements, budget, admin_actor, approved_obligation):
        result = disbursements.create_dv(
            budget.fund_cluster_id, budget.object_of_expenditure_id,
            "Payee", "Particulars", Decimal("20000.01"), "ada", admin_actor,
            obligation_id=approved_obligation.id,
        )
        assert isinstance(result.error, BudgetExceededError)
        assert result.error.ceiling_type == "obligation"
        assert result.error.excess == Decimal("0.01")

    def test_linked_dvs_share_the_obligation(
        self, create_dv, disbursements, budget, admin_actor, approved_obligation,
    ):
        create_dv(amount=Decimal("12000.00"), obligation_id=approved_obligation.id)
        create_dv(amount=Decimal("8000.00"), obligation_id=approved_obligation.id)

        third = disbursements.create_dv(
            budget.fund_cluster_id, budget.object_of_expenditure_id,
            "Payee", "Particulars", Decimal("0.01"), "ada", admin_actor,
            obligation_id=approved_obligation.id,
        )

        assert isinstance(third.error, BudgetExceededError)
        assert third.error.committed_amount == Decimal("20000.00")
        assert third.error.available_amount == Decimal("0.00")

    def test_cancelled_dv_frees_the_obligation(
        self, create_dv, disbursements, admin_actor, approved_obligation,
    ):
        first = create_dv(amount=Decimal("20000.00"), obligation_id=approved_obligation.id)
        disbursements.cancel_dv(first.id, admin_actor).unwrap()

        again = create_dv(amount=Decimal("20000.00"), obligation_id=approved_obligation.id)

        assert again.dv_no != first.dv_no

    def test_update_counts_other_linked_dvs(
        self, create_dv, disbursements, admin_actor, approved_obligation,
    ):
        create_dv(amount=Decimal("15000.00"), obligation_id=approved_obligation.id)
        draft = create_dv(
            amount=Decimal("5000.00"), obligation_id=approved_obligation.id, submit=False,
        )

        # Re-saving the draft's own amount is fine; growing it is not
        assert disbursements.update_dv(
            draft.id, {"amount": Decimal("5000.00")}, admin_actor,
        ).is_success
        grown = disbursements.update_dv(draft.id, {"amount": Decimal("5000.01")}, admin_actor)
        assert grown.error_code == "BUDGET_EXCEEDED"


class TestDrafts:

    def test_draft_has_no_stages(self, create_dv, approvals):
        draft = create_dv(submit=False)

        assert draft.status is DVStatus.DRAFT
        assert approvals.get_approval_history(draft.id) == []

    def test_update_draft(self, create_dv, disbursements, admin_actor):
        draft = create_dv(submit=False)

        updated = disbursements.update_dv(
            draft.id,
            {"amount": "18000", "payee_name": "XYZ Trading", "payment_mode": "ada"},
            admin_actor,
        ).unwrap()

        assert updated.amount == Decimal("18000.00")
        assert updated.payee_name == "XYZ Trading"
        assert updated.payment_mode is PaymentMode.ADA
        assert updated.dv_no == draft.dv_no

    @pytest.mark.parametrize("field", ["dv_no", "status", "fiscal_year", "fund_cluster_id"])
    def test_immutable_fields_rejected(self, create_dv, disbursements, admin_actor, field):
        draft = create_dv(submit=False)

        result = disbursements.update_dv(draft.id, {field: "x"}, admin_actor)

        assert isinstance(result.error, ValidationError)
        assert result.error.field == field

    def test_empty_update_rejected(self, create_dv, disbursements, admin_actor):
        draft = create_dv(submit=False)
        result = disbursements.update_dv(draft.id, {}, admin_actor)
        assert result.error_code == "VALIDATION_ERROR"

    def test_submitted_dv_not_editable(self, create_dv, disbursements, admin_actor):
        dv = create_dv()

        result = disbursements.update_dv(dv.id, {"particulars": "Changed"}, admin_actor)

        assert isinstance(result.error, StateConflictError)
        assert result.error.current_status == "pending_division"

    def test_submit_starts_workflow(self, create_dv, disbursements, approvals, admin_actor):
        draft = create_dv(submit=False)

        submitted = disbursements.submit_dv(draft.id, admin_actor).unwrap()

        assert submitted.status is DVStatus.PENDING_DIVISION
        assert len(approvals.get_approval_history(draft.id)) == 4

    def test_submit_twice_conflicts(self, create_dv, disbursements, admin_actor):
        dv = create_dv()
        result = disbursements.submit_dv(dv.id, admin_actor)
        assert result.error_code == "STATE_CONFLICT"


class TestCancelDV:

    def test_cancel_pending_dv_skips_stages(
        self, create_dv, disbursements, approvals, division_actor, admin_actor,
    ):
        dv = create_dv()
        approvals.approve_stage(dv.id, division_actor).unwrap()

        cancelled = disbursements.cancel_dv(dv.id, admin_actor, "Duplicate").unwrap()

        assert cancelled.status is DVStatus.CANCELLED
        statuses = [s.status for s in approvals.get_approval_history(dv.id)]
        assert statuses == [
            StageStatus.APPROVED,
            StageStatus.SKIPPED,
            StageStatus.SKIPPED,
            StageStatus.SKIPPED,
        ]

    def test_cancel_draft(self, create_dv, disbursements, admin_actor):
        draft = create_dv(submit=False)
        assert disbursements.cancel_dv(draft.id, admin_actor).unwrap().status is DVStatus.CANCELLED

    def test_cancel_approved_without_payment(self, approved_dv, disbursements, admin_actor):
        dv = approved_dv()
        assert disbursements.cancel_dv(dv.id, admin_actor).is_success

    def test_cancel_rejected_dv(self, create_dv, disbursements, approvals, division_actor, admin_actor):
        dv = create_dv()
        approvals.reject_stage(dv.id, division_actor, "Wrong fund").unwrap()
        assert disbursements.cancel_dv(dv.id, admin_actor).is_success

    def test_cancel_twice_conflicts(self, create_dv, disbursements, admin_actor):
        dv = create_dv()
        disbursements.cancel_dv(dv.id, admin_actor).unwrap()

        result = disbursements.cancel_dv(dv.id, admin_actor)

        assert isinstance(result.error, StateConflictError)
        assert result.error.current_status == "cancelled"

    @pytest.mark.parametrize("issued", [False, True])
    def test_cancel_cancels_outstanding_payment(
        self, approved_dv, disbursements, payments, cashier_actor, admin_actor,
        audit_sink, issued,
    ):
        dv = approved_dv()
        payment = payments.create_payment(dv.id, "cash", Decimal("15000.00"), cashier_actor).unwrap()
        if issued:
            payments.issue_payment(
                payment.id, cashier_actor, "Juan dela Cruz", date(FISCAL_YEAR, 3, 16),
            ).unwrap()

        cancelled = disbursements.cancel_dv(dv.id, admin_actor, reason="Duplicate claim").unwrap()

        assert cancelled.status is DVStatus.CANCELLED
        [row] = PaymentSelector(disbursements.session).payments_for_dv(dv.id)
        assert row.status is PaymentStatus.CANCELLED
        assert row.remarks == "Duplicate claim"
        assert audit_sink.actions()[-2:] == ["cancel_payment", "cancel_dv"]
        # Nothing left to clear
        assert payments.clear_payment(payment.id, cashier_actor).error_code == "STATE_CONFLICT"

    def test_stale_payment_dv_can_be_cancelled(
        self, approved_dv, disbursements, payments, cashier_actor, admin_actor,
    ):
        dv = approved_dv()
        payment = payments.create_payment(dv.id, "check_mds", Decimal("15000.00"), cashier_actor).unwrap()
        payments.issue_payment(
            payment.id, cashier_actor, "Juan dela Cruz", date(FISCAL_YEAR, 3, 16),
        ).unwrap()
        payments.mark_stale(payment.id, cashier_actor).unwrap()

        assert disbursements.cancel_dv(dv.id, admin_actor).is_success
        [row] = PaymentSelector(disbursements.session).payments_for_dv(dv.id)
        assert row.status is PaymentStatus.STALE

    def test_cancelled_dv_not_pending_for_anyone(self, create_dv, disbursements, approvals, admin_actor):
        dv = create_dv()
        disbursements.cancel_dv(dv.id, admin_actor).unwrap()
        assert approvals.get_pending_approvals_for_user(admin_actor) == []
