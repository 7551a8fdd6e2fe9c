import os
from functools import lru_cache

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from eventbook.infrastructure.db.models import User
from eventbook.infrastructure.db.session import SessionLocal
from eventbook.infrastructure.gateways.payment_gateway import PaymentGateway
from eventbook.infrastructure.gateways.razorpay_gateway import RazorpayGateway
from eventbook.infrastructure.repositories.user_repository import UserRepository


def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


@lru_cache(maxsize=1)
def _razorpay_gateway() -> RazorpayGateway:
    return RazorpayGateway.from_env()


def get_payment_gateway() -> PaymentGateway:
    return _razorpay_gateway()


def get_currency() -> str:
    return os.getenv("PAYMENT_CURRENCY", "INR").upper()


def get_current_user(
    x_user_id: str | None = Header(default=None),
    db: Session = Depends(get_db),
) -> User:
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing X-User-Id header",
        )
    user = UserRepository(db).get_by_id(x_user_id)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unknown user",
        )
    return user
