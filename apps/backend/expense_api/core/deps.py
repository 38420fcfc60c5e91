from __future__ import annotations

from fastapi import Depends
from sqlalchemy.orm import Session

from expense_api.core.config import settings
from expense_api.core.database import get_db
from expense_api import models


def get_current_user(db: Session = Depends(get_db)) -> models.User:
    """Very lightweight current user resolver.

    Returns the first user (creates a demo one if none). Authentication is
    handled upstream; tests may override this dependency.
    """
    user = db.query(models.User).order_by(models.User.id).first()
    if not user:
        user = models.User(email="demo@example.com", is_active=True)
        db.add(user)
        db.flush()
        db.add(
            models.UserProfile(
                user_id=user.id,
                display_name="Demo",
                base_currency=settings.DEFAULT_CURRENCY,
                timezone=settings.APP_TIMEZONE,
            )
        )
        db.commit()
        db.refresh(user)
    return user
