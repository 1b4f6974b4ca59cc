import logging
from datetime import date, timedelta
from typing import Iterable, List, Optional, Sequence, Tuple

from fastapi import APIRouter, File, Form, UploadFile
from sqlmodel import Session, col, select

from dates import parse_flexible_date
from db import SessionDep
from errors import NotFoundError, ValidationError
from models import Donation, Request
from schemas import DonationCreate
from storage import save_upload
from .auth import CurrentUserRoleDep, require_role

logger = logging.getLogger(__name__)

router = APIRouter(tags=["donations"])

MIN_DAYS_TO_EXPIRY = 14
MAX_IMAGES = 4


def exclude_approved(
    donations: Iterable[Donation], approved_requests: Iterable[Request]
) -> List[Donation]:
    """
    Drop donations that already have an approved request.
    Availability is derived at read time; donations are never flagged.
    """
    claimed = {r.donation_id for r in approved_requests if r.status == "approved"}
    return [d for d in donations if d.id not in claimed]


def _approved_requests(session: Session) -> Sequence[Request]:
    return session.exec(select(Request).where(Request.status == "approved")).all()


def check_donation_dates(data: DonationCreate, today: date) -> Tuple[date, date]:
    expiry = parse_flexible_date(data.expiry_date)
    if expiry is None:
        raise ValidationError("Invalid expiry date.")
    if expiry <= today + timedelta(days=MIN_DAYS_TO_EXPIRY):
        raise ValidationError("We do not accept medicines expiring within 2 weeks.")

    manufactured = parse_flexible_date(data.manufacturing_date)
    if manufactured is None:
        raise ValidationError("Invalid manufacturing date.")
    if manufactured >= expiry:
        raise ValidationError("Manufacturing date must be before the expiry date.")
    return manufactured, expiry


def submit_donation(
    session: Session,
    donor_id: int,
    data: DonationCreate,
    images: Optional[List[str]] = None,
    today: Optional[date] = None,
) -> Donation:
    """
    Validate and store a donor's medicine lot.

    The expiry date must fall more than MIN_DAYS_TO_EXPIRY days after today.
    """
    manufactured, expiry = check_donation_dates(data, today or date.today())

    donation = Donation(
        donor_id=donor_id,
        medicine_name=data.medicine_name,
        quantity=data.quantity,
        medicine_form=data.medicine_form,
        strength=data.strength,
        manufacturing_date=manufactured,
        expiry_date=expiry,
        donor_name=data.donor_name,
        donor_phone_number=data.donor_phone_number,
        donor_address=data.donor_address,
        images=list(images or []),
    )
    session.add(donation)
    session.commit()
    session.refresh(donation)
    logger.info("Donor %s submitted donation %s", donor_id, donation.id)
    return donation


def list_donor_donations(session: Session, donor_id: int) -> List[Donation]:
    stmt = (
        select(Donation)
        .where(Donation.donor_id == donor_id)
        .order_by(col(Donation.created_at).desc(), col(Donation.id).desc())
    )
    return list(session.exec(stmt).all())


def list_available_donations(session: Session, as_of: date) -> List[Donation]:
    stmt = (
        select(Donation)
        .where(Donation.expiry_date >= as_of)
        .order_by(col(Donation.created_at).desc(), col(Donation.id).desc())
    )
    return list(session.exec(stmt).all())


def expire_donations(session: Session, as_of: date) -> int:
    """Flag active donations that are past expiry. Returns how many changed."""
    expired = session.exec(
        select(Donation).where(
            Donation.status == "active",
            Donation.expiry_date <= as_of,
        )
    ).all()
    for donation in expired:
        donation.status = "expired"
        session.add(donation)
    session.commit()
    return len(expired)


@router.post("/", response_model=Donation, status_code=201)
def create_donation(
    session: SessionDep,
    current: CurrentUserRoleDep,
    medicine_name: str = Form(..., min_length=1),
    quantity: str = Form(..., min_length=1),
    medicine_form: str = Form(..., min_length=1),
    strength: str = Form(..., min_length=1),
    manufacturing_date: str = Form(..., min_length=1),
    expiry_date: str = Form(..., min_length=1),
    donor_name: str = Form(..., min_length=1),
    donor_phone_number: str = Form(..., min_length=1),
    donor_address: str = Form(..., min_length=1),
    images: List[UploadFile] = File(default=[]),
):
    """
    Submit a donation (multipart form with up to four photos).
    """
    donor = require_role(current, "donor")

    data = DonationCreate(
        medicine_name=medicine_name.strip(),
        quantity=quantity.strip(),
        medicine_form=medicine_form.strip(),
        strength=strength.strip(),
        manufacturing_date=manufacturing_date,
        expiry_date=expiry_date,
        donor_name=donor_name.strip(),
        donor_phone_number=donor_phone_number.strip(),
        donor_address=donor_address.strip(),
    )
    if len(images) > MAX_IMAGES:
        raise ValidationError(f"You can upload at most {MAX_IMAGES} images.")

    # nothing is written to storage for a rejected lot
    check_donation_dates(data, date.today())

    image_urls = [save_upload(image, "donations") for image in images if image.filename]
    return submit_donation(session, donor.id, data, image_urls)


@router.get("/mine", response_model=List[Donation])
def my_donations(session: SessionDep, current: CurrentUserRoleDep):
    """
    The donor's own lots that have not been handed over yet.
    """
    donor = require_role(current, "donor")
    return exclude_approved(
        list_donor_donations(session, donor.id), _approved_requests(session)
    )


@router.get("/available", response_model=List[Donation])
def available_donations(session: SessionDep):
    """
    Unexpired lots that no request has been approved for.
    """
    return exclude_approved(
        list_available_donations(session, date.today()), _approved_requests(session)
    )


@router.get("/{donation_id}", response_model=Donation)
def get_donation(donation_id: int, session: SessionDep):
    donation = session.get(Donation, donation_id)
    if donation is None:
        raise NotFoundError("Donation not found")
    return donation
