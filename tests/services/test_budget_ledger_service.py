"""
Tests for BudgetLedgerService -- appropriation / allotment / obligation ledger.

Covers:
- create_allotment(): ceiling enforcement against the appropriation,
  exact-fit boundary, excess reporting, nothing written on failure
- create_obligation() / approve_obligation(): ceiling enforcement against
  the allotment, re-validation at approval, ORS number issuance
- reject_obligation(): remarks required, terminal status guard
- get_budget_availability(): balances, idempotence, paid-DV disbursement
- Reference data: duplicate codes, fiscal year and amount validation
- Audit records and structured log events
"""

from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from fms_kernel.domain.ledger import ObligationStatus
from fms_kernel.exceptions import (
    BudgetExceededError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)
from fms_kernel.models.budget import Allotment
from fms_kernel.selectors.budget_selector import BudgetSelector
from tests.conftest import FISCAL_YEAR, build_budget


class TestAllotmentCeiling:

    def test_allotment_above_appropriation_rejected(self, ledger, admin_actor):
        """An appropriation of 1,000,000 cannot fund an allotment of 1,000,001."""
        setup = build_budget(ledger, admin_actor, allotment=None)

        result = ledger.create_allotment(
            setup.appropriation_id, setup.object_of_expenditure_id,
            Decimal("1000001.00"), "MOOE", "Too much", admin_actor,
        )

        assert not result.is_success
        assert isinstance(result.error, BudgetExceededError)
        assert result.error.ceiling_type == "appropriation"
        assert result.error.excess == Decimal("1.00")

    def test_rejected_allotment_writes_nothing(self, ledger, admin_actor, session):
        setup = build_budget(ledger, admin_actor, allotment=None)

        ledger.create_allotment(
            setup.appropriation_id, setup.object_of_expenditure_id,
            Decimal("1000001.00"), "MOOE", None, admin_actor,
        )

        count = session.execute(select(func.count(Allotment.id))).scalar_one()
        assert count == 0

    def test_allotments_may_exactly_exhaust_appropriation(self, ledger, admin_actor):
        setup = build_budget(ledger, admin_actor, allotment=Decimal("600000.00"))

        result = ledger.create_allotment(
            setup.appropriation_id, setup.object_of_expenditure_id,
            Decimal("400000.00"), "MOOE", None, admin_actor,
        )
        assert result.is_success

        over = ledger.create_allotment(
            setup.appropriation_id, setup.object_of_expenditure_id,
            Decimal("0.01"), "MOOE", None, admin_actor,
        )
        assert over.error_code == "BUDGET_EXCEEDED"
        assert over.error.available_amount == Decimal("0.00")

    def test_existing_allotments_count_toward_ceiling(self, ledger, admin_actor):
        setup = build_budget(ledger, admin_actor, allotment=Decimal("700000.00"))

        result = ledger.create_allotment(
            setup.appropriation_id, setup.object_of_expenditure_id,
            Decimal("300000.01"), "MOOE", None, admin_actor,
        )

        assert result.error.committed_amount == Decimal("700000.00")
        assert result.error.excess == Decimal("0.01")

    def test_unknown_appropriation(self, ledger, admin_actor, budget):
        result = ledger.create_allotment(
            uuid4(), budget.object_of_expenditure_id,
            Decimal("1.00"), "MOOE", None, admin_actor,
        )
        assert isinstance(result.error, NotFoundError)

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5.00"), "abc", Decimal("100.005")])
    def test_invalid_amount(self, ledger, admin_actor, budget, amount):
        result = ledger.create_allotment(
            budget.appropriation_id, budget.object_of_expenditure_id,
            amount, "MOOE", None, admin_actor,
        )
        assert isinstance(result.error, ValidationError)
        assert result.error.field == "amount"


class TestObligations:

    def test_obligation_exhausts_allotment_then_next_approval_fails(self, ledger, admin_actor, budget):
        """500,000 allotment: a 500,000 obligation leaves nothing for one more peso."""
        full = ledger.create_obligation(
            budget.allotment_id, "Contractor A", "Building repair",
            Decimal("500000.00"), admin_actor,
        ).unwrap()
        extra = ledger.create_obligation(
            budget.allotment_id, "Contractor B", "Paint",
            Decimal("1.00"), admin_actor,
        ).unwrap()

        approved = ledger.approve_obligation(full.id, admin_actor).unwrap()
        assert approved.status is ObligationStatus.APPROVED

        availability = ledger.get_budget_availability(budget.allotment_id).unwrap()
        assert availability.unobligated_balance == Decimal("0.00")

        second = ledger.approve_obligation(extra.id, admin_actor)
        assert isinstance(second.error, BudgetExceededError)
        assert second.error.ceiling_type == "allotment"
        assert second.error.excess == Decimal("1.00")

    def test_failed_approval_leaves_obligation_pending(self, ledger, admin_actor, budget):
        first = ledger.create_obligation(
            budget.allotment_id, "A", None, Decimal("400000.00"), admin_actor,
        ).unwrap()
        second = ledger.create_obligation(
            budget.allotment_id, "B", None, Decimal("200000.00"), admin_actor,
        ).unwrap()
        ledger.approve_obligation(first.id, admin_actor).unwrap()

        assert not ledger.approve_obligation(second.id, admin_actor).is_success

        pending = BudgetSelector(ledger.session).list_obligations(status="pending")
        assert [o.id for o in pending] == [second.id]

    def test_create_obligation_checks_approved_total(self, ledger, admin_actor, budget):
        done = ledger.create_obligation(
            budget.allotment_id, "A", None, Decimal("499999.00"), admin_actor,
        ).unwrap()
        ledger.approve_obligation(done.id, admin_actor).unwrap()

        result = ledger.create_obligation(
            budget.allotment_id, "B", None, Decimal("1000.00"), admin_actor,
        )
        assert result.error_code == "BUDGET_EXCEEDED"

    def test_pending_obligations_do_not_consume_balance(self, ledger, admin_actor, budget):
        ledger.create_obligation(
            budget.allotment_id, "A", None, Decimal("300000.00"), admin_actor,
        ).unwrap()

        availability = ledger.get_budget_availability(budget.allotment_id).unwrap()
        assert availability.obligation == Decimal("0.00")
        assert availability.unobligated_balance == Decimal("500000.00")

    def test_approval_issues_ors_number(self, ledger, admin_actor, budget):
        obligation = ledger.create_obligation(
            budget.allotment_id, "A", None, Decimal("100.00"), admin_actor,
        ).unwrap()
        assert obligation.ors_number is None

        approved = ledger.approve_obligation(obligation.id, admin_actor).unwrap()

        # Deterministic clock is March 2025; fund cluster "01"
        assert approved.ors_number == f"01-{FISCAL_YEAR}-03-0001"
        assert approved.approved_by == admin_actor.user_id

    def test_approval_keeps_supplied_ors_number(self, ledger, admin_actor, budget):
        obligation = ledger.create_obligation(
            budget.allotment_id, "A", None, Decimal("100.00"), admin_actor,
            ors_number="ORS-MANUAL-7",
        ).unwrap()

        approved = ledger.approve_obligation(obligation.id, admin_actor).unwrap()
        assert approved.ors_number == "ORS-MANUAL-7"

    def test_approve_twice_conflicts(self, ledger, admin_actor, budget):
        obligation = ledger.create_obligation(
            budget.allotment_id, "A", None, Decimal("100.00"), admin_actor,
        ).unwrap()
        ledger.approve_obligation(obligation.id, admin_actor).unwrap()

        again = ledger.approve_obligation(obligation.id, admin_actor)
        assert isinstance(again.error, StateConflictError)
        assert again.error.current_status == "approved"

    def test_approve_unknown_obligation(self, ledger, admin_actor, budget):
        result = ledger.approve_obligation(uuid4(), admin_actor)
        assert isinstance(result.error, NotFoundError)

    def test_reject_requires_remarks(self, ledger, admin_actor, budget):
        obligation = ledger.create_obligation(
            budget.allotment_id, "A", None, Decimal("100.00"), admin_actor,
        ).unwrap()

        result = ledger.reject_obligation(obligation.id, admin_actor, "  ")
        assert isinstance(result.error, ValidationError)

    def test_rejected_obligation_cannot_be_approved(self, ledger, admin_actor, budget):
        obligation = ledger.create_obligation(
            budget.allotment_id, "A", None, Decimal("100.00"), admin_actor,
        ).unwrap()
        rejected = ledger.reject_obligation(
            obligation.id, admin_actor, "Duplicate request",
        ).unwrap()
        assert rejected.status is ObligationStatus.REJECTED
        assert rejected.remarks == "Duplicate request"

        result = ledger.approve_obligation(obligation.id, admin_actor)
        assert result.error_code == "STATE_CONFLICT"


class TestAvailability:

    def test_repeated_reads_identical(self, ledger, admin_actor, budget):
        obligation = ledger.create_obligation(
            budget.allotment_id, "A", None, Decimal("125000.50"), admin_actor,
        ).unwrap()
        ledger.approve_obligation(obligation.id, admin_actor).unwrap()

        first = ledger.get_budget_availability(budget.allotment_id).unwrap()
        second = ledger.get_budget_availability(budget.allotment_id).unwrap()

        assert first == second
        assert first.appropriation == Decimal("1000000.00")
        assert first.allotment == Decimal("500000.00")
        assert first.obligation == Decimal("125000.50")
        assert first.unobligated_balance == Decimal("374999.50")
        assert first.disbursement == Decimal("0.00")

    def test_unknown_allotment(self, ledger):
        result = ledger.get_budget_availability(uuid4())
        assert isinstance(result.error, NotFoundError)


class TestReferenceData:

    def test_duplicate_fund_cluster_code(self, ledger, admin_actor, budget):
        result = ledger.create_fund_cluster("01", "Another", admin_actor)
        assert isinstance(result.error, ValidationError)
        assert result.error.field == "code"

    def test_duplicate_object_code(self, ledger, admin_actor, budget):
        result = ledger.create_object_of_expenditure("5-02-03-010", "Again", admin_actor)
        assert result.error_code == "VALIDATION_ERROR"

    @pytest.mark.parametrize("year", [1999, 2101, "2025", True])
    def test_implausible_fiscal_year(self, ledger, admin_actor, budget, year):
        result = ledger.create_appropriation(
            budget.fund_cluster_id, year, Decimal("1.00"), "GAA", admin_actor,
        )
        assert isinstance(result.error, ValidationError)
        assert result.error.field == "year"

    def test_appropriation_requires_known_fund_cluster(self, ledger, admin_actor):
        result = ledger.create_appropriation(
            uuid4(), FISCAL_YEAR, Decimal("1.00"), "GAA", admin_actor,
        )
        assert result.error_code == "NOT_FOUND"

    def test_float_amount_rejected(self, ledger, admin_actor, budget):
        result = ledger.create_appropriation(
            budget.fund_cluster_id, FISCAL_YEAR, 1000.0, "GAA", admin_actor,
        )
        assert result.error_code == "VALIDATION_ERROR"


class TestAuditAndLogging:

    def test_audit_records_emitted_after_commit(self, ledger, admin_actor, budget, audit_sink):
        assert audit_sink.actions() == [
            "create_fund_cluster",
            "create_object_of_expenditure",
            "create_appropriation",
            "create_allotment",
        ]
        record = audit_sink.records[-1]
        assert record.actor_id == admin_actor.user_id
        assert record.entity_id == budget.allotment_id
        assert record.new_values["amount"] == Decimal("500000.00")

    def test_failed_operation_emits_no_audit(self, ledger, admin_actor, budget, audit_sink):
        before = len(audit_sink.records)
        ledger.create_allotment(
            budget.appropriation_id, budget.object_of_expenditure_id,
            Decimal("999999999.00"), "MOOE", None, admin_actor,
        )
        assert len(audit_sink.records) == before

    def test_budget_exceeded_logged(self, ledger, admin_actor, budget, captured_logs):
        ledger.create_allotment(
            budget.appropriation_id, budget.object_of_expenditure_id,
            Decimal("600000.00"), "MOOE", None, admin_actor,
        )

        logs = captured_logs()
        exceeded = [r for r in logs if r["message"] == "budget_exceeded"]
        assert len(exceeded) == 1
        assert exceeded[0]["ceiling_type"] == "appropriation"
        assert exceeded[0]["requested_amount"] == "600000.00"
        rejected = [r for r in logs if r["message"] == "create_allotment_rejected"]
        assert rejected[0]["error_code"] == "BUDGET_EXCEEDED"
        assert rejected[0]["actor_id"] == str(admin_actor.user_id)

    def test_completed_event_has_duration(self, ledger, admin_actor, budget, captured_logs):
        ledger.create_obligation(
            budget.allotment_id, "A", None, Decimal("10.00"), admin_actor,
        ).unwrap()

        completed = [r for r in captured_logs() if r["message"] == "create_obligation_completed"]
        assert len(completed) == 1
        assert completed[0]["duration_ms"] >= 0
