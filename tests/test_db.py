from sqlalchemy.pool import StaticPool
from sqlmodel import Session

from db import create_db_and_tables, make_engine
from models import User


def test_in_memory_sqlite_shares_one_database(tmp_path):
    engine = make_engine("sqlite://")
    assert isinstance(engine.pool, StaticPool)
    create_db_and_tables(engine)

    with Session(engine) as session:
        session.add(User(email="a@example.com", full_name="Ann", contact_number="03001234567",
                         address="House 1, Street 2", role="donor", password_hash="x"))
        session.commit()
    with Session(engine) as session:
        assert session.get(User, 1).full_name == "Ann"

    on_disk = make_engine(f"sqlite:///{tmp_path / 'medshare.db'}")
    assert not isinstance(on_disk.pool, StaticPool)
