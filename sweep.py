"""
Mark past-expiry donations as expired.

Run once a day from cron (``medshare-sweep``). Listings already hide
expired lots by date; this only keeps the stored status honest.
"""
import logging
from datetime import date

from sqlmodel import Session

from db import engine
from routers.donations import expire_donations

logger = logging.getLogger(__name__)


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    with Session(engine) as session:
        count = expire_donations(session, date.today())
    logger.info("Marked %s donation(s) as expired", count)


if __name__ == "__main__":
    main()
