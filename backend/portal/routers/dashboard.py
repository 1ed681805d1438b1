# portal/routers/dashboard.py
from datetime import datetime

from fastapi import APIRouter, Depends, Request

from portal import auth, membership, models, schemas
from portal.dependencies import get_clock

router = APIRouter(tags=["Dashboard"])


# -------------------------------------------------
# DASHBOARD: profile + membership details
# -------------------------------------------------
@router.get("/user", response_model=schemas.DashboardOut)
def get_user(request: Request, user: models.User = Depends(auth.get_current_user)):
    """
    Everything the dashboard shows in one read. Users who never paid get
    an inactive external-tier placeholder.
    """
    record = user.membership
    if record is not None:
        now = datetime.utcfromtimestamp(get_clock(request)())
        details = schemas.MembershipOut.model_validate(record).model_copy(
            update={"active": membership.is_membership_active(record, now=now)}
        )
    else:
        details = schemas.MembershipOut()

    return schemas.DashboardOut(
        id=user.id,
        name=user.name,
        email=user.email,
        membership_details=details,
        payment_methods=[schemas.SavedPaymentMethodOut.model_validate(pm) for pm in user.payment_methods],
        created_at=user.created_at,
        updated_at=user.updated_at,
    )
