import logging
from contextlib import contextmanager
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Optional

from sqlalchemy import update
from sqlalchemy.orm import Session

from app.core.exceptions import ConcurrencyConflictError, NotFoundError, ValidationError

CENT = Decimal("0.01")
# Numeric(12, 2) leaves ten integer digits
MAX_AMOUNT = Decimal("9999999999.99")


def to_cents(value: Any, label: str) -> Decimal:
    """
    Parse a non-negative money amount. Values finer than a cent are rejected
    rather than rounded, so sums computed here match what the database stores.
    """
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise ValidationError(f"Invalid amount for {label}: {value!r}")
    if not amount.is_finite() or amount < 0:
        raise ValidationError(f"Amount for {label} must be a non-negative number")
    if amount > MAX_AMOUNT:
        raise ValidationError(f"Amount for {label} is too large")
    cents = amount.quantize(CENT)
    if cents != amount:
        raise ValidationError(f"Amount for {label} cannot have more than two decimal places")
    return cents


class BaseService:
    """
    Common plumbing for the service layer: session handling, logging and
    guarded (compare-and-swap) updates.
    """

    def __init__(self, db: Session):
        self.db = db
        self._logger = logging.getLogger(self.__class__.__module__)

    def log_info(self, message: str, **extra):
        self._logger.info(message, extra=extra or None)

    def log_warning(self, message: str, **extra):
        self._logger.warning(message, extra=extra or None)

    @contextmanager
    def unit_of_work(self):
        """
        Commit everything done inside the block, or roll all of it back.
        Services never commit partially.
        """
        try:
            yield
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

    def _get_or_404(self, model, ident: Any, label: Optional[str] = None):
        obj = self.db.get(model, ident)
        if obj is None:
            raise NotFoundError(label or model.__name__, ident)
        return obj

    def _guarded_update(
        self,
        model,
        ident: Any,
        expected: Dict[str, Any],
        values: Dict[str, Any],
    ) -> None:
        """
        UPDATE ... WHERE id = :ident AND <every expected column matches>.

        Zero matched rows means another request changed the row after we
        read it, so the caller's view is stale.
        """
        stmt = update(model).where(model.id == ident)
        for name, value in expected.items():
            column = getattr(model, name)
            stmt = stmt.where(column.is_(None) if value is None else column == value)
        result = self.db.execute(
            stmt.values(**values).execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.log_warning(
                f"Guarded update lost the race on {model.__tablename__} #{ident}",
                entity=model.__tablename__,
                entity_id=ident,
            )
            raise ConcurrencyConflictError()
