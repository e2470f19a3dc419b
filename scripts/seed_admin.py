"""
Creates (or reuses) an administrator holding the Managing Director position
and prints a bearer token for it.

    python -m scripts.seed_admin [email]
"""
import sys

from app.core.init_system import seed_permission_catalog
from app.database import SessionLocal, init_db
from app.models.employee import Employee, EmployeeRole
from app.models.position import Position
from app.services import auth as auth_service


def seed(admin_email: str = "admin@example.com"):
    init_db()
    db = SessionLocal()
    try:
        seed_permission_catalog(db)
        position = db.query(Position).filter(Position.name == "Managing Director").first()

        admin = db.query(Employee).filter(Employee.email == admin_email).first()
        if not admin:
            admin = Employee(
                email=admin_email,
                first_name="Admin",
                last_name="User",
                role=EmployeeRole.ADMIN,
                position_id=position.id,
                leave_balance=0,
                is_active=True,
            )
            db.add(admin)
            db.commit()
            db.refresh(admin)
            print(f"Admin employee {admin_email} created (id={admin.id})")
        else:
            db.commit()
            print(f"Admin employee {admin_email} already exists (id={admin.id})")

        print(f"Bearer token: {auth_service.create_employee_token(admin.id)}")
    finally:
        db.close()


if __name__ == "__main__":
    seed(*sys.argv[1:2])
