import asyncio
import logging

from estacionai import config
from estacionai.adapters.auth import hash_password
from estacionai.adapters.repo_postgres import SqlUnitOfWork
from estacionai.deps import SessionLocal, engine
from estacionai.domain.db_models import Base
from estacionai.domain.errors import DuplicateKey

"""
Crea las tablas y el administrador inicial (ADMIN_EMAIL / ADMIN_PASSWORD).
    python -m estacionai.seed_db
"""

logger = logging.getLogger(__name__)


async def seed(email: str, password: str, name: str) -> bool:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with SqlUnitOfWork(SessionLocal) as uow:
        if await uow.admins.get_by_email(email) is not None:
            return False
        try:
            await uow.admins.add(name=name, email=email, password_hash=hash_password(password))
            await uow.commit()
        except DuplicateKey:
            return False
    return True


def main() -> None:
    logging.basicConfig(level=config.LOG_LEVEL)
    if not config.ADMIN_PASSWORD:
        raise SystemExit("ADMIN_PASSWORD es obligatorio")
    email = config.ADMIN_EMAIL.strip().lower()
    created = asyncio.run(seed(email, config.ADMIN_PASSWORD, config.ADMIN_NAME))
    logger.info("Seed OK: %s %s", email, "created" if created else "already present")


if __name__ == "__main__":
    main()
