import logging
from contextlib import contextmanager
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select, update, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from greenpoints.database import Base, build_engine, build_sessionmaker
from greenpoints.errors import (
    InsufficientPoints,
    RewardsError,
    StorageUnavailable,
    UniquenessConflict,
    VoucherNotFound,
    VoucherOutOfStock,
)
from greenpoints.models.voucher import Voucher
from greenpoints.models.points import UserPoints, UserTransaction
from greenpoints.models.redemption import VoucherRedemption
from greenpoints.schemas.voucher import VoucherCreate, VoucherResponse
from greenpoints.schemas.redemption import RedemptionCreate, RedemptionResponse
from greenpoints.schemas.transaction import TransactionCreate, TransactionResponse
from greenpoints.storage.base import StorageBackend
from greenpoints.timeutil import as_utc, utcnow

logger = logging.getLogger(__name__)


class SqlStorageBackend(StorageBackend):
    """System-of-record store on any SQLAlchemy database (Postgres in production)."""

    name = "sql"

    def __init__(self, database_url: Optional[str] = None, engine: Optional[Engine] = None):
        if engine is None:
            if not database_url:
                raise ValueError("SqlStorageBackend needs a database_url or an engine")
            engine = build_engine(database_url)
        self.engine = engine
        self._sessionmaker = build_sessionmaker(engine)

    @contextmanager
    def _session(self):
        db: Session = self._sessionmaker()
        try:
            yield db
            db.commit()
        except RewardsError:
            db.rollback()
            raise
        except SQLAlchemyError as exc:
            db.rollback()
            raise StorageUnavailable(f"Storage error: {exc.__class__.__name__}") from exc
        finally:
            db.close()

    def init_schema(self) -> None:
        try:
            Base.metadata.create_all(bind=self.engine)
        except SQLAlchemyError as exc:
            raise StorageUnavailable("Could not create schema") from exc

    def drop_schema(self) -> None:
        Base.metadata.drop_all(bind=self.engine)

    def ping(self) -> None:
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            raise StorageUnavailable("Database is unreachable") from exc

    def close(self) -> None:
        self.engine.dispose()

    # ------------------------------------------------------------------
    # Row mapping
    # ------------------------------------------------------------------

    @staticmethod
    def _voucher_out(row: Voucher) -> VoucherResponse:
        out = VoucherResponse.model_validate(row)
        out.updated_at = as_utc(out.updated_at)
        return out

    @staticmethod
    def _redemption_out(row: VoucherRedemption) -> RedemptionResponse:
        return RedemptionResponse(
            id=row.id,
            user_id=row.user_id,
            voucher_id=row.voucher_id,
            voucher_code=row.voucher_code,
            points_used=row.points_used,
            status=row.status,
            redeemed_at=as_utc(row.redeemed_at),
            expires_at=as_utc(row.expires_at),
            used_at=as_utc(row.used_at),
        )

    @staticmethod
    def _transaction_out(row: UserTransaction) -> TransactionResponse:
        return TransactionResponse(
            id=row.id,
            user_id=row.user_id,
            type=row.type,
            points=row.points,
            description=row.description or "",
            metadata=row.meta or {},
            created_at=as_utc(row.created_at),
        )

    # ------------------------------------------------------------------
    # Vouchers
    # ------------------------------------------------------------------

    def list_vouchers(self, active_only: bool = True) -> List[VoucherResponse]:
        with self._session() as db:
            q = select(Voucher)
            if active_only:
                q = q.where(Voucher.is_active.is_(True))
            q = q.order_by(Voucher.points_required.asc(), Voucher.id.asc())
            return [self._voucher_out(v) for v in db.scalars(q).all()]

    def get_voucher(self, voucher_id: str) -> Optional[VoucherResponse]:
        with self._session() as db:
            row = db.get(Voucher, voucher_id)
            return self._voucher_out(row) if row else None

    def upsert_voucher(self, voucher: VoucherCreate) -> VoucherResponse:
        with self._session() as db:
            row = db.merge(Voucher(**voucher.model_dump(), updated_at=utcnow()))
            db.flush()
            return self._voucher_out(row)

    def decrement_stock(self, voucher_id: str) -> Optional[int]:
        with self._session() as db:
            # the write comes first so the row is locked before anything is read
            result = db.execute(
                update(Voucher)
                .where(Voucher.id == voucher_id, Voucher.current_stock > 0)
                .values(current_stock=Voucher.current_stock - 1, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            row = db.execute(
                select(Voucher.current_stock).where(Voucher.id == voucher_id)
            ).first()
            if row is None:
                raise VoucherNotFound(voucher_id)
            if result.rowcount == 1:
                return row[0]
            if row[0] is None:
                return None
            raise VoucherOutOfStock(voucher_id)

    def increment_stock(self, voucher_id: str) -> Optional[int]:
        with self._session() as db:
            db.execute(
                update(Voucher)
                .where(
                    Voucher.id == voucher_id,
                    Voucher.current_stock.is_not(None),
                    Voucher.current_stock < Voucher.stock_limit,
                )
                .values(current_stock=Voucher.current_stock + 1, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            row = db.execute(
                select(Voucher.current_stock).where(Voucher.id == voucher_id)
            ).first()
            if row is None:
                raise VoucherNotFound(voucher_id)
            return row[0]

    # ------------------------------------------------------------------
    # Points
    # ------------------------------------------------------------------

    @staticmethod
    def _points_in(db: Session, user_id: str) -> int:
        value = db.execute(select(UserPoints.points).where(UserPoints.user_id == user_id)).scalar()
        return int(value or 0)

    def get_points(self, user_id: str) -> int:
        with self._session() as db:
            return self._points_in(db, user_id)

    def debit_points(self, user_id: str, amount: int) -> int:
        if amount == 0:
            return self.get_points(user_id)
        with self._session() as db:
            result = db.execute(
                update(UserPoints)
                .where(UserPoints.user_id == user_id, UserPoints.points >= amount)
                .values(points=UserPoints.points - amount, updated_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            balance = self._points_in(db, user_id)
            if result.rowcount != 1:
                raise InsufficientPoints(amount, balance)
            return balance

    def credit_points(self, user_id: str, amount: int) -> int:
        # a concurrent first credit can win the insert; the retry then updates
        for _ in range(2):
            with self._session() as db:
                result = db.execute(
                    update(UserPoints)
                    .where(UserPoints.user_id == user_id)
                    .values(points=UserPoints.points + amount, updated_at=utcnow())
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount == 1:
                    return self._points_in(db, user_id)
                db.add(UserPoints(user_id=user_id, points=amount, updated_at=utcnow()))
                try:
                    db.flush()
                    return amount
                except IntegrityError:
                    db.rollback()
                    logger.debug("Concurrent account creation for %s, retrying credit", user_id)
        raise StorageUnavailable(f"Could not credit points for {user_id}")

    # ------------------------------------------------------------------
    # Redemptions
    # ------------------------------------------------------------------

    def insert_redemption(self, redemption: RedemptionCreate) -> RedemptionResponse:
        conflict = False
        with self._session() as db:
            row = VoucherRedemption(**redemption.model_dump(), status="active")
            db.add(row)
            try:
                db.flush()
                return self._redemption_out(row)
            except IntegrityError:
                db.rollback()
                conflict = True
        if conflict and self.voucher_code_exists(redemption.voucher_code):
            raise UniquenessConflict(f"Voucher code already issued: {redemption.voucher_code}")
        raise StorageUnavailable("Could not persist redemption")

    def get_redemption(self, redemption_id: str) -> Optional[RedemptionResponse]:
        with self._session() as db:
            row = db.get(VoucherRedemption, redemption_id)
            return self._redemption_out(row) if row else None

    def get_redemption_by_code(self, voucher_code: str) -> Optional[RedemptionResponse]:
        with self._session() as db:
            row = db.scalars(
                select(VoucherRedemption).where(VoucherRedemption.voucher_code == voucher_code)
            ).first()
            return self._redemption_out(row) if row else None

    def list_redemptions(self, user_id: str) -> List[RedemptionResponse]:
        with self._session() as db:
            rows = db.scalars(
                select(VoucherRedemption)
                .where(VoucherRedemption.user_id == user_id)
                .order_by(VoucherRedemption.redeemed_at.desc())
            ).all()
            return [self._redemption_out(r) for r in rows]

    def transition_redemption(
        self,
        redemption_id: str,
        from_status: str,
        to_status: str,
        used_at: Optional[datetime] = None,
    ) -> Optional[RedemptionResponse]:
        values = {"status": to_status}
        if used_at is not None:
            values["used_at"] = used_at
        with self._session() as db:
            result = db.execute(
                update(VoucherRedemption)
                .where(VoucherRedemption.id == redemption_id, VoucherRedemption.status == from_status)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return None
            return self._redemption_out(db.get(VoucherRedemption, redemption_id))

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def append_transaction(
        self, entry: TransactionCreate, entry_id: str, created_at: datetime
    ) -> TransactionResponse:
        with self._session() as db:
            row = UserTransaction(
                id=entry_id,
                user_id=entry.user_id,
                type=entry.type,
                points=entry.points,
                description=entry.description,
                meta=entry.metadata,
                created_at=created_at,
            )
            db.add(row)
            db.flush()
            return self._transaction_out(row)

    def list_transactions(self, user_id: str, limit: Optional[int] = None) -> List[TransactionResponse]:
        with self._session() as db:
            q = (
                select(UserTransaction)
                .where(UserTransaction.user_id == user_id)
                .order_by(UserTransaction.created_at.desc())
            )
            if limit is not None:
                q = q.limit(limit)
            return [self._transaction_out(r) for r in db.scalars(q).all()]
