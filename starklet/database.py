import logging
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import create_engine, func, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, Session

from starklet.errors import StoreError, ValidationError

logger = logging.getLogger(__name__)

STATUS_PENDING = "pending"
STATUS_COMPLETED = "completed"


class Base(DeclarativeBase):
    pass


class SessionRecord(Base):
    __tablename__ = "sessions"

    id: Mapped[str] = mapped_column(primary_key=True)
    public_key: Mapped[str | None] = mapped_column(nullable=True, default=None)
    full_public_key: Mapped[str]
    session_token: Mapped[str] = mapped_column(index=True)
    signature_r: Mapped[str]
    signature_s: Mapped[str]
    status: Mapped[str] = mapped_column(default=STATUS_PENDING)
    account_address: Mapped[str | None] = mapped_column(nullable=True, default=None, index=True)
    created_at: Mapped[str]

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "public_key": self.public_key,
            "full_public_key": self.full_public_key,
            "session_token": self.session_token,
            "signature_r": self.signature_r,
            "signature_s": self.signature_s,
            "status": self.status,
            "account_address": self.account_address,
            "created_at": self.created_at,
        }

    def __repr__(self) -> str:  # pragma: no cover
        return f"<SessionRecord id={self.id} status={self.status} account={self.account_address}>"


def _now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def make_engine(database_url: str) -> Engine:
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False  # necessário para SQLite + Flask
    return create_engine(database_url, connect_args=connect_args, echo=False)


def init_db(engine: Engine) -> None:
    Base.metadata.create_all(engine)
    logger.info("Banco de dados inicializado em '%s'.", engine.url)


class SessionStore:
    """Persistence for handshake sessions. Every method returns plain dicts."""

    def __init__(self, engine: Engine):
        self.engine = engine

    @contextmanager
    def _session(self):
        with Session(self.engine) as session:
            try:
                yield session
                session.commit()
            except Exception:
                session.rollback()
                raise

    def create(self, fields: dict) -> dict:
        record = SessionRecord(
            id=str(uuid.uuid4()),
            public_key=fields.get("public_key"),
            full_public_key=fields["full_public_key"],
            session_token=fields["session_token"],
            signature_r=fields["signature_r"],
            signature_s=fields["signature_s"],
            status=STATUS_PENDING,
            account_address=None,
            created_at=_now_iso(),
        )
        try:
            with self._session() as session:
                session.add(record)
                session.flush()
                data = record.to_dict()
        except SQLAlchemyError as exc:
            logger.error("Falha ao criar sessão no banco: %s", exc, exc_info=True)
            raise StoreError("Failed to create session") from exc

        logger.info("Sessão '%s' criada com status='pending'.", data["id"])
        return data

    def get_by_id(self, session_id: str) -> dict | None:
        try:
            with self._session() as session:
                record = session.get(SessionRecord, session_id)
                return record.to_dict() if record else None
        except SQLAlchemyError as exc:
            raise StoreError("Failed to read session") from exc

    def get_by_id_and_token(self, session_id: str, token: str) -> dict | None:
        stmt = select(SessionRecord).where(
            SessionRecord.id == session_id,
            SessionRecord.session_token == token,
        )
        try:
            with self._session() as session:
                record = session.scalars(stmt).first()
                return record.to_dict() if record else None
        except SQLAlchemyError as exc:
            raise StoreError("Failed to read session") from exc

    def get_pending_by_account(self, account_address: str) -> list[dict]:
        stmt = (
            select(SessionRecord)
            .where(
                SessionRecord.account_address == account_address,
                SessionRecord.status == STATUS_PENDING,
            )
            .order_by(SessionRecord.created_at.desc())
        )
        try:
            with self._session() as session:
                return [record.to_dict() for record in session.scalars(stmt)]
        except SQLAlchemyError as exc:
            raise StoreError("Failed to fetch pending sessions") from exc

    def update_to_completed(self, session_id: str, account_address: str) -> dict | None:
        """
        Single guarded UPDATE: status and account_address change together, and
        only while the row is still pending.

        Returns None for an unknown id; raises ValidationError when the row
        has already been completed.
        """
        stmt = (
            update(SessionRecord)
            .where(
                SessionRecord.id == session_id,
                SessionRecord.status == STATUS_PENDING,
            )
            .values(status=STATUS_COMPLETED, account_address=account_address)
        )
        try:
            with self._session() as session:
                result = session.execute(stmt)
                record = session.get(SessionRecord, session_id, populate_existing=True)
                if record is None:
                    logger.warning(
                        "update_to_completed: sessão '%s' não encontrada no banco.",
                        session_id,
                    )
                    return None
                if result.rowcount == 0:
                    raise ValidationError("Session already completed")
                data = record.to_dict()
        except SQLAlchemyError as exc:
            logger.error("Falha ao completar sessão '%s': %s", session_id, exc, exc_info=True)
            raise StoreError("Failed to update session") from exc

        logger.info(
            "Sessão '%s' marcada como 'completed' (account=%s).",
            session_id,
            account_address,
        )
        return data

    def count_by_status(self) -> dict:
        stmt = select(SessionRecord.status, func.count(SessionRecord.id)).group_by(SessionRecord.status)
        with self._session() as session:
            counts = dict(session.execute(stmt).all())

        return {
            STATUS_PENDING: counts.get(STATUS_PENDING, 0),
            STATUS_COMPLETED: counts.get(STATUS_COMPLETED, 0),
        }
