import logging

from fannu.application.quote_service import QuoteService
from fannu.infrastructure.db.session import get_db_session

logger = logging.getLogger(__name__)


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    with get_db_session() as db:
        expired = QuoteService(db).expire_stale_quotes()
    logger.info("Quote sweep done, %s quote(s) expired", expired)


if __name__ == "__main__":
    main()
