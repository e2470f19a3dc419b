"""
Request-scoped authentication dependencies.
Resolves the bearer token to an Employee and builds the AuthContext that
every service call receives.
"""
import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session, selectinload

from app.database import get_db
from app.models.employee import Employee
from app.services import auth as auth_service
from app.services.authorization import AuthContext

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/token")


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_employee(token: str = Depends(oauth2_scheme), db: Session = Depends(get_db)) -> Employee:
    """
    Extracts and validates the current employee from the JWT token.
    """
    payload = auth_service.decode_access_token(token)

    if payload is None:
        logger.warning("Authentication failed: Invalid token")
        raise _unauthorized("Could not validate credentials")

    if payload.get("error") == "TOKEN_EXPIRED":
        logger.info("Authentication failed: Token expired")
        raise _unauthorized("TOKEN_EXPIRED")

    if payload.get("type") != "access":
        logger.warning("Authentication failed: Invalid token type")
        raise _unauthorized("Invalid token type")

    subject = payload.get("sub")
    try:
        employee_id = int(subject)
    except (TypeError, ValueError):
        logger.warning("Authentication failed: Missing or malformed subject in token")
        raise _unauthorized("Missing subject in token")

    employee = (
        db.query(Employee)
        .options(selectinload(Employee.position))
        .filter(Employee.id == employee_id)
        .first()
    )
    if employee is None:
        logger.warning(f"Authentication failed: Employee {employee_id} not found in database")
        raise _unauthorized("User not found")
    if not employee.is_active:
        logger.warning(f"Authentication failed: Employee {employee_id} is inactive")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User is inactive"
        )
    return employee


def get_auth_context(employee: Employee = Depends(get_current_employee)) -> AuthContext:
    return AuthContext.from_employee(employee)
