"""
Racing reviewers against a file-backed database with real commits.

Each "request" gets its own session. The loser read the row before the
winner committed, so its identity map still says the request is pending;
the guarded UPDATE must catch that.
"""
import pytest
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.core.exceptions import ConcurrencyConflictError
from app.core.init_system import seed_permission_catalog
from app.database import Base, enable_sqlite_foreign_keys
from app.models.cash_advance import ApprovalLevel, CashAdvance, ReviewAction
from app.models.employee import Employee, EmployeeRole
from app.models.leave_ledger import LeaveLedgerEntry
from app.models.leave_request import LeaveRequest, LeaveStatus
from app.models.liquidation import Liquidation, LiquidationStatus
from app.models.position import Position
from app.models.ticket import Store
from app.services.authorization import AuthContext
from app.services.cash_advance_service import CashAdvanceService
from app.services.leave_service import LeaveService
from app.services.liquidation_service import LiquidationService


@pytest.fixture
def session_factory(tmp_path):
    file_engine = create_engine(
        f"sqlite:///{tmp_path / 'race.db'}", connect_args={"check_same_thread": False}
    )
    enable_sqlite_foreign_keys(file_engine)
    Base.metadata.create_all(bind=file_engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=file_engine)
    yield factory
    file_engine.dispose()


@pytest.fixture
def actors(session_factory):
    """Committed employee (balance 10) and reviewer contexts."""
    with session_factory() as db:
        seed_permission_catalog(db)
        positions = {p.name: p for p in db.query(Position).all()}
        staff = Employee(email="staff@example.com", role=EmployeeRole.EMPLOYEE,
                         position_id=positions["Staff"].id, leave_balance=Decimal("10"))
        director = Employee(email="md@example.com", role=EmployeeRole.ADMIN,
                            position_id=positions["Managing Director"].id, leave_balance=Decimal("0"))
        hr = Employee(email="hr@example.com", role=EmployeeRole.ADMIN,
                      position_id=positions["HR"].id, leave_balance=Decimal("0"))
        accounting = Employee(email="acct@example.com", role=EmployeeRole.ADMIN,
                              position_id=positions["Accounting"].id, leave_balance=Decimal("0"))
        db.add_all([staff, director, hr, accounting, Store(store_code="ST-001", store_name="Main Street")])
        db.commit()
        return {
            "accounting": AuthContext.from_employee(accounting),
            "staff": AuthContext.from_employee(staff),
            "director": AuthContext.from_employee(director),
            "hr": AuthContext.from_employee(hr),
        }


def test_racing_leave_approvals_debit_once(session_factory, actors):
    staff = actors["staff"]
    with session_factory() as db:
        start = date.today() + timedelta(days=30)
        leave = LeaveService(db).create(staff, staff.employee_id, "Vacation Leave", start, start + timedelta(days=4), "Trip")
        leave_id = leave.id

    loser_db = session_factory()
    winner_db = session_factory()
    try:
        # Loser reads first and sees a pending request
        stale = loser_db.get(LeaveRequest, leave_id)
        assert stale.status == LeaveStatus.PENDING.value

        LeaveService(winner_db).approve(actors["director"], leave_id)

        with pytest.raises(ConcurrencyConflictError):
            LeaveService(loser_db).approve(actors["director"], leave_id)
    finally:
        loser_db.close()
        winner_db.close()

    with session_factory() as db:
        assert db.get(LeaveRequest, leave_id).status == LeaveStatus.APPROVED.value
        assert Decimal(db.get(Employee, staff.employee_id).leave_balance) == Decimal("5")
        debits = db.query(LeaveLedgerEntry).filter(LeaveLedgerEntry.leave_request_id == leave_id).all()
        assert len(debits) == 1


def test_racing_revokes_credit_once(session_factory, actors):
    """A revoke that lost to another revoke must not credit twice."""
    staff = actors["staff"]
    with session_factory() as db:
        start = date.today() + timedelta(days=60)
        service = LeaveService(db)
        leave_id = service.create(staff, staff.employee_id, "Vacation Leave", start, start + timedelta(days=1), "Trip").id
        service.approve(actors["director"], leave_id)

    loser_db = session_factory()
    winner_db = session_factory()
    try:
        assert loser_db.get(LeaveRequest, leave_id).status == LeaveStatus.APPROVED.value
        LeaveService(winner_db).revoke(actors["director"], leave_id)
        with pytest.raises(ConcurrencyConflictError):
            LeaveService(loser_db).revoke(actors["director"], leave_id)
    finally:
        loser_db.close()
        winner_db.close()

    with session_factory() as db:
        assert Decimal(db.get(Employee, staff.employee_id).leave_balance) == Decimal("10")


def test_racing_level1_reviews(session_factory, actors):
    with session_factory() as db:
        advance_id = CashAdvanceService(db).file(
            actors["staff"], "support", Decimal("500"), datetime.now(timezone.utc)
        ).id

    loser_db = session_factory()
    winner_db = session_factory()
    try:
        assert loser_db.get(CashAdvance, advance_id).level1_status == "pending"
        CashAdvanceService(winner_db).act(actors["hr"], advance_id, ApprovalLevel.LEVEL1, ReviewAction.APPROVE)
        with pytest.raises(ConcurrencyConflictError):
            CashAdvanceService(loser_db).act(actors["hr"], advance_id, ApprovalLevel.LEVEL1, ReviewAction.REJECT)
    finally:
        loser_db.close()
        winner_db.close()

    with session_factory() as db:
        advance = db.get(CashAdvance, advance_id)
        assert advance.level1_status == "approved"
        assert advance.level2_status == "pending"


def _approved_advance(session_factory, actors, level2=True):
    with session_factory() as db:
        service = CashAdvanceService(db)
        advance_id = service.file(
            actors["staff"], "support", Decimal("1000"), datetime.now(timezone.utc)
        ).id
        service.act(actors["hr"], advance_id, ApprovalLevel.LEVEL1, ReviewAction.APPROVE)
        if level2:
            service.act(actors["accounting"], advance_id, ApprovalLevel.LEVEL2, ReviewAction.APPROVE)
        return advance_id


def _pending_liquidation(session_factory, actors):
    advance_id = _approved_advance(session_factory, actors)
    with session_factory() as db:
        store_id = db.query(Store).one().id
        return LiquidationService(db).create(
            actors["staff"], advance_id, store_id, date.today(), [{"gas": "900"}]
        ).id


def test_racing_level2_reviews(session_factory, actors):
    advance_id = _approved_advance(session_factory, actors, level2=False)

    loser_db = session_factory()
    winner_db = session_factory()
    try:
        assert loser_db.get(CashAdvance, advance_id).level2_status == "pending"
        CashAdvanceService(winner_db).act(actors["accounting"], advance_id, ApprovalLevel.LEVEL2, ReviewAction.REJECT)
        with pytest.raises(ConcurrencyConflictError):
            CashAdvanceService(loser_db).act(
                actors["director"], advance_id, ApprovalLevel.LEVEL2, ReviewAction.APPROVE
            )
    finally:
        loser_db.close()
        winner_db.close()

    with session_factory() as db:
        advance = db.get(CashAdvance, advance_id)
        assert advance.level2_status == "rejected"
        assert advance.status == "rejected"


def test_racing_liquidation_reviews(session_factory, actors):
    liquidation_id = _pending_liquidation(session_factory, actors)

    loser_db = session_factory()
    winner_db = session_factory()
    try:
        assert loser_db.get(Liquidation, liquidation_id).status == LiquidationStatus.PENDING.value
        LiquidationService(winner_db).review(actors["accounting"], liquidation_id, ReviewAction.APPROVE)
        with pytest.raises(ConcurrencyConflictError):
            LiquidationService(loser_db).review(actors["director"], liquidation_id, ReviewAction.REJECT)
    finally:
        loser_db.close()
        winner_db.close()

    with session_factory() as db:
        liquidation = db.get(Liquidation, liquidation_id)
        assert liquidation.status == LiquidationStatus.APPROVED.value
        assert liquidation.reviewer_id == actors["accounting"].employee_id


def test_edit_loses_to_review(session_factory, actors):
    """An admin edit based on the pending row must not overwrite a review that landed first."""
    liquidation_id = _pending_liquidation(session_factory, actors)

    loser_db = session_factory()
    winner_db = session_factory()
    try:
        assert loser_db.get(Liquidation, liquidation_id).status == LiquidationStatus.PENDING.value
        LiquidationService(winner_db).review(actors["accounting"], liquidation_id, ReviewAction.REJECT)
        with pytest.raises(ConcurrencyConflictError):
            LiquidationService(loser_db).edit(actors["director"], liquidation_id, {"remarks": "Checked"})
    finally:
        loser_db.close()
        winner_db.close()

    with session_factory() as db:
        liquidation = db.get(Liquidation, liquidation_id)
        assert liquidation.status == LiquidationStatus.REJECTED.value
        assert liquidation.remarks is None


def test_review_loses_to_edit(session_factory, actors):
    liquidation_id = _pending_liquidation(session_factory, actors)

    loser_db = session_factory()
    winner_db = session_factory()
    try:
        assert loser_db.get(Liquidation, liquidation_id).status == LiquidationStatus.PENDING.value
        LiquidationService(winner_db).edit(actors["director"], liquidation_id, {"status": "approved"})
        with pytest.raises(ConcurrencyConflictError):
            LiquidationService(loser_db).review(actors["accounting"], liquidation_id, ReviewAction.REJECT)
    finally:
        loser_db.close()
        winner_db.close()

    with session_factory() as db:
        liquidation = db.get(Liquidation, liquidation_id)
        assert liquidation.status == LiquidationStatus.APPROVED.value
        assert liquidation.reviewer_id == actors["director"].employee_id
