# backend/spacebook/api/dependencies/services.py
"""
Service layer dependencies for dependency injection.

Each request gets one service graph bound to its database session. The Stripe
client behind it is shared process-wide and only built when a route actually
talks to Stripe.
"""

from fastapi import Depends
from sqlalchemy.orm import Session

from ...services.dependencies import SettlementServices, build_services
from .database import get_db


def get_services(db: Session = Depends(get_db)) -> SettlementServices:
    """Build the settlement services for this request's session."""
    return build_services(db)
