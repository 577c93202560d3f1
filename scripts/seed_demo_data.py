import logging

from fannu.domain.creators import CreatorStatus
from fannu.infrastructure.db.models import Base
from fannu.infrastructure.db.session import engine, get_db_session
from fannu.infrastructure.repositories.creator_repository import CreatorRepository

logger = logging.getLogger(__name__)

CREATORS = [
    {
        "slug": "teddy-afro",
        "display_name": "Teddy Afro",
        "phone": "+251911000001",
        "email": "bookings@teddyafro.example",
        "default_deposit_percent": 30,
        "default_deposit_refundable": True,
    },
    {
        "slug": "helen-berhe",
        "display_name": "Helen Berhe",
        "phone": "+251911000002",
        "default_deposit_percent": 50,
        "default_deposit_refundable": False,
        "default_additional_terms": "Travel outside Addis Ababa is billed separately.",
    },
    {
        "slug": "mc-abel",
        "display_name": "MC Abel",
        "phone": "+251911000003",
        "default_deposit_percent": 20,
        "default_deposit_refundable": True,
    },
]


def seed_creators(db) -> None:
    repository = CreatorRepository(db)
    for item in CREATORS:
        fields = {key: value for key, value in item.items() if key != "slug"}
        repository.create_or_update(
            item["slug"],
            status=CreatorStatus.ACTIVE,
            booking_enabled=True,
            booking_approved=True,
            **fields,
        )


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    Base.metadata.create_all(bind=engine)
    with get_db_session() as db:
        seed_creators(db)
    logger.info("Seed complete: %s", ", ".join(item["slug"] for item in CREATORS))


if __name__ == "__main__":
    main()
