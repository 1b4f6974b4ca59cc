import logging
from typing import List, Optional, Sequence

from fastapi import APIRouter, File, Form, UploadFile
from sqlalchemy import case
from sqlmodel import Session, col, select

from db import SessionDep
from errors import AuthorizationError, NotFoundError, ValidationError
from models import Donation, Request as RequestModel, User, utcnow
from schemas import (
    Contact,
    DonorRequestRead,
    ReceiverRequestRead,
    RequestDecision,
    RequestRead,
)
from storage import delete_upload, save_upload
from .auth import CurrentUserRoleDep, require_role
from .notifications import (
    MEDICINE_REQUEST,
    REQUEST_UPDATE,
    notify,
    request_created_message,
    request_decided_message,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["requests"])

PENDING = "pending"
APPROVED = "approved"
REJECTED = "rejected"
DECISIONS = (APPROVED, REJECTED)
DEFAULT_REJECT_REASON = "No reason provided"
ALREADY_GIVEN = "This donation has already been given to another receiver."


def approved_request_for(session: Session, donation_id: int) -> Optional[RequestModel]:
    return session.exec(
        select(RequestModel).where(
            RequestModel.donation_id == donation_id,
            RequestModel.status == APPROVED,
        )
    ).first()


def create_request(
    session: Session,
    receiver_id: int,
    donation_id: int,
    prescription_ref: Optional[str],
    medicine_name: Optional[str] = None,
    strength: Optional[str] = None,
    donor_id: Optional[int] = None,
) -> RequestModel:
    """
    Add a pending request for one donation to the session (no commit).

    Name and strength are copied in so the request still describes the
    medicine after the donation stops being listed.
    """
    if not prescription_ref:
        raise ValidationError("Prescription image required.")

    donation = session.get(Donation, donation_id)
    if donation is None:
        raise NotFoundError(f"Donation {donation_id} not found")
    if donor_id is not None and donor_id != donation.donor_id:
        raise ValidationError(f"Donation {donation_id} does not belong to donor {donor_id}")
    if approved_request_for(session, donation.id) is not None:
        raise ValidationError(ALREADY_GIVEN)

    req = RequestModel(
        prescription_image=prescription_ref,
        donation_id=donation.id,
        donor_id=donation.donor_id,
        receiver_id=receiver_id,
        medicine_name=medicine_name or donation.medicine_name,
        strength=strength or donation.strength,
        status=PENDING,
    )
    session.add(req)
    session.flush()
    return req


def check_bulk_shape(
    donation_ids: Sequence[int],
    donation_names: Sequence[str],
    donor_ids: Sequence[int],
    strengths: Sequence[str],
) -> None:
    n = len(donation_ids)
    if (
        n == 0
        or len(donation_names) != n
        or len(donor_ids) != n
        or (strengths and len(strengths) != n)
    ):
        raise ValidationError("Invalid bulk request data.")


def submit_bulk(
    session: Session,
    receiver_id: int,
    donation_ids: Sequence[int],
    donation_names: Sequence[str],
    donor_ids: Sequence[int],
    strengths: Sequence[str],
    prescription_ref: Optional[str],
) -> List[RequestModel]:
    """
    Create one request per donation, in input order, and notify each donor.

    The batch commits as a single transaction: if any item fails nothing
    is kept.
    """
    check_bulk_shape(donation_ids, donation_names, donor_ids, strengths)
    if not prescription_ref:
        raise ValidationError("Prescription image required.")

    created: List[RequestModel] = []
    try:
        for i, donation_id in enumerate(donation_ids):
            req = create_request(
                session,
                receiver_id,
                donation_id,
                prescription_ref,
                medicine_name=donation_names[i],
                strength=strengths[i] if strengths else None,
                donor_id=donor_ids[i],
            )
            notify(
                session,
                req.donor_id,
                request_created_message(req.medicine_name, req.strength),
                MEDICINE_REQUEST,
                {"request_id": req.id},
            )
            created.append(req)
        session.commit()
    except Exception:
        session.rollback()
        raise

    for req in created:
        session.refresh(req)
    logger.info("Receiver %s submitted %s request(s)", receiver_id, len(created))
    return created


def decide_request(
    session: Session,
    request_id: int,
    donor_id: int,
    decision: str,
    reason: Optional[str] = None,
) -> RequestModel:
    """
    Approve or reject a pending request on behalf of its donor.

    The decision is committed before the receiver is notified; a failed
    notification is logged and does not undo the decision.
    """
    if decision not in DECISIONS:
        raise ValidationError("Invalid status")

    req = session.get(RequestModel, request_id)
    if req is None:
        raise NotFoundError("Request not found")
    if req.donor_id != donor_id:
        raise AuthorizationError("You can only manage requests for your own donations.")
    if req.status != PENDING:
        raise ValidationError("Only pending requests can be updated")
    if decision == APPROVED and approved_request_for(session, req.donation_id) is not None:
        raise ValidationError(ALREADY_GIVEN)

    req.status = decision
    req.reject_reason = (reason or DEFAULT_REJECT_REASON) if decision == REJECTED else None
    req.updated_at = utcnow()
    session.add(req)
    session.commit()
    session.refresh(req)
    logger.info("Donor %s %s request %s", donor_id, decision, req.id)

    try:
        notify(
            session,
            req.receiver_id,
            request_decided_message(req.medicine_name, decision),
            REQUEST_UPDATE,
            {"request_id": req.id, "status": decision},
        )
        session.commit()
    except Exception:
        session.rollback()
        logger.exception("Could not notify receiver of request %s", req.id)
        session.refresh(req)
    return req


def list_donor_requests(session: Session, donor_id: int) -> List[DonorRequestRead]:
    """Requests made against the donor's lots, newest first, with receiver contact."""
    stmt = (
        select(RequestModel, User)
        .join(User, User.id == RequestModel.receiver_id)
        .where(RequestModel.donor_id == donor_id)
        .order_by(col(RequestModel.created_at).desc(), col(RequestModel.id).desc())
    )
    return [
        DonorRequestRead(
            **RequestRead.model_validate(req).model_dump(),
            receiver=Contact.model_validate(receiver),
        )
        for req, receiver in session.exec(stmt).all()
    ]


def list_receiver_requests(session: Session, receiver_id: int) -> List[ReceiverRequestRead]:
    """Pending first, then approved, then rejected; newest first within each."""
    status_rank = case(
        (RequestModel.status == PENDING, 1),
        (RequestModel.status == APPROVED, 2),
        (RequestModel.status == REJECTED, 3),
        else_=4,
    )
    stmt = (
        select(RequestModel, User)
        .join(User, User.id == RequestModel.donor_id, isouter=True)
        .where(RequestModel.receiver_id == receiver_id)
        .order_by(
            status_rank,
            col(RequestModel.created_at).desc(),
            col(RequestModel.id).desc(),
        )
    )
    return [
        ReceiverRequestRead(
            **RequestRead.model_validate(req).model_dump(),
            donor=Contact.model_validate(donor) if donor else None,
        )
        for req, donor in session.exec(stmt).all()
    ]


def _unviewed_requests(session: Session, donor_id: int) -> Sequence[RequestModel]:
    return session.exec(
        select(RequestModel).where(
            RequestModel.donor_id == donor_id,
            RequestModel.viewed_by_donor == False,  # noqa: E712
        )
    ).all()


@router.post("/", status_code=201)
def create_requests(
    session: SessionDep,
    current: CurrentUserRoleDep,
    medicine_id: List[int] = Form(...),
    medicine_name: List[str] = Form(default=[]),
    donor_id: List[int] = Form(default=[]),
    strength: List[str] = Form(default=[]),
    prescription: Optional[UploadFile] = File(default=None),
):
    """
    Request one or several donations with a single prescription image.
    A single request is just a batch of one.
    """
    receiver = require_role(current, "receiver")

    if prescription is None or not prescription.filename:
        raise ValidationError("Prescription image required.")
    check_bulk_shape(medicine_id, medicine_name, donor_id, strength)

    prescription_ref = save_upload(prescription, "requests")
    try:
        created = submit_bulk(
            session,
            receiver.id,
            medicine_id,
            medicine_name,
            donor_id,
            strength,
            prescription_ref,
        )
    except Exception:
        delete_upload(prescription_ref)
        raise

    message = (
        "Request submitted successfully."
        if len(created) == 1
        else "Bulk request submitted successfully."
    )
    return {
        "message": message,
        "requests": [RequestRead.model_validate(r) for r in created],
    }


@router.get("/")
def list_requests(session: SessionDep, current: CurrentUserRoleDep):
    """
    Donors see requests against their lots; receivers see their own requests.
    """
    user = current["user"]
    if current["role"] == "donor":
        return list_donor_requests(session, user.id)
    return list_receiver_requests(session, user.id)


@router.get("/new")
def check_new_requests(session: SessionDep, current: CurrentUserRoleDep):
    donor = require_role(current, "donor")
    count = len(_unviewed_requests(session, donor.id))
    return {"has_new_requests": count > 0, "count": count}


@router.post("/viewed")
def mark_requests_viewed(session: SessionDep, current: CurrentUserRoleDep):
    donor = require_role(current, "donor")
    unviewed = _unviewed_requests(session, donor.id)
    for req in unviewed:
        req.viewed_by_donor = True
        session.add(req)
    session.commit()
    return {"message": "Requests marked as viewed.", "updated": len(unviewed)}


@router.get("/{request_id}", response_model=RequestRead)
def get_request(request_id: int, session: SessionDep, current: CurrentUserRoleDep):
    req = session.get(RequestModel, request_id)
    if req is None:
        raise NotFoundError("Request not found")
    if current["user"].id not in (req.donor_id, req.receiver_id):
        raise AuthorizationError("You can only view your own requests.")
    return req


@router.put("/{request_id}")
def update_request_status(
    request_id: int,
    update: RequestDecision,
    session: SessionDep,
    current: CurrentUserRoleDep,
):
    donor = require_role(current, "donor")
    req = decide_request(session, request_id, donor.id, update.status, update.reason)
    return {
        "message": "Request updated successfully",
        "request": RequestRead.model_validate(req),
    }
