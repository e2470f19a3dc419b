import logging
from sqlalchemy.orm import Session
from app.database import SessionLocal
from app.models.position import Permission, PermissionKey, Position

logger = logging.getLogger(__name__)

PERMISSION_DESCRIPTIONS = {
    PermissionKey.APPROVE_LEAVE: "Approve, reject and revoke leave requests",
    PermissionKey.MANAGE_LEAVE_CREDITS: "Set employee leave credit balances",
    PermissionKey.APPROVE_CASH_ADVANCE_LEVEL1: "First-level cash advance review",
    PermissionKey.APPROVE_CASH_ADVANCE_LEVEL2: "Second-level cash advance review",
    PermissionKey.MANAGE_CASH_FLOW: "Delete cash advance requests",
    PermissionKey.APPROVE_LIQUIDATIONS: "Approve or reject liquidations",
    PermissionKey.MANAGE_LIQUIDATION: "Edit and delete liquidations",
}

DEFAULT_POSITIONS = {
    "HR": (
        PermissionKey.APPROVE_LEAVE,
        PermissionKey.MANAGE_LEAVE_CREDITS,
        PermissionKey.APPROVE_CASH_ADVANCE_LEVEL1,
    ),
    "Accounting": (
        PermissionKey.APPROVE_CASH_ADVANCE_LEVEL2,
        PermissionKey.MANAGE_CASH_FLOW,
        PermissionKey.APPROVE_LIQUIDATIONS,
        PermissionKey.MANAGE_LIQUIDATION,
    ),
    "Operations Manager": (
        PermissionKey.APPROVE_LEAVE,
        PermissionKey.APPROVE_CASH_ADVANCE_LEVEL1,
    ),
    "Managing Director": PermissionKey.ALL,
    "Staff": (),
}


def seed_permission_catalog(db: Session) -> None:
    """
    Creates missing permission keys and default positions. Existing
    positions keep whatever grants an administrator has given them.
    Flushes only; the caller commits.
    """
    permissions = {p.key: p for p in db.query(Permission).all()}
    for key in PermissionKey.ALL:
        if key not in permissions:
            permissions[key] = Permission(key=key, description=PERMISSION_DESCRIPTIONS.get(key))
            db.add(permissions[key])

    existing = {p.name for p in db.query(Position).all()}
    for name, keys in DEFAULT_POSITIONS.items():
        if name in existing:
            continue
        db.add(Position(name=name, permissions=[permissions[k] for k in keys]))
        logger.info(f"Created default position: {name}")
    db.flush()


def init_system_data():
    """
    Checks if the permission catalog needs seeding and seeds it.
    """
    db = SessionLocal()
    try:
        seed_permission_catalog(db)
        db.commit()
        logger.info(f"System initialization check: {db.query(Position).count()} position(s) found.")
    except Exception as e:
        db.rollback()
        logger.error(f"Error during system initialization check: {str(e)}", exc_info=True)
        raise
    finally:
        db.close()
