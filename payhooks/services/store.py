"""Store service — the persistence interface the webhook pipeline consumes.

Responsible for:
- insert / select_one / select_many / update against the three pipeline
  tables, addressed by table name
- Turning unique-constraint violations into DuplicateKeyError so callers
  can tell "already recorded" apart from a real failure
- Committing each operation on its own (a rejected insert is rolled back
  without touching earlier committed work)

Rows cross this boundary as plain dicts, so the ingestor, router and
retry job never handle ORM instances.
"""

import logging

from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from payhooks.exceptions import DuplicateKeyError, PersistenceFailure
from payhooks.models.payment import Payment
from payhooks.models.subscription import Subscription
from payhooks.models.webhook_event import WebhookEvent

logger = logging.getLogger(__name__)

WEBHOOK_EVENTS = WebhookEvent.__tablename__
SUBSCRIPTIONS = Subscription.__tablename__
PAYMENTS = Payment.__tablename__

TABLES = {
    WEBHOOK_EVENTS: WebhookEvent,
    SUBSCRIPTIONS: Subscription,
    PAYMENTS: Payment,
}


def row_to_dict(obj):
    """Serialize a model instance to a dict keyed by column name."""
    return {col.key: getattr(obj, col.key) for col in obj.__table__.columns}


def is_unique_violation(exc):
    """Return True if an IntegrityError was raised by a unique constraint.

    Postgres drivers expose SQLSTATE 23505 (psycopg2 as pgcode, psycopg 3
    as sqlstate); SQLite only reports it in the message.
    """
    orig = getattr(exc, "orig", None)
    code = getattr(orig, "pgcode", None) or getattr(orig, "sqlstate", None)
    if code == "23505":
        return True
    message = str(orig or exc)
    return "UNIQUE constraint failed" in message or "duplicate key" in message


class SqlAlchemyStore:
    """Store backed by a SQLAlchemy session.

    The session is injected (normally db.session from the app context) so
    tests and jobs decide which session the pipeline writes through.
    """

    def __init__(self, session):
        self.session = session

    def _model(self, table):
        try:
            return TABLES[table]
        except KeyError:
            raise PersistenceFailure(f"Unknown table: {table}")

    def _column(self, model, column):
        attr = getattr(model, column, None)
        if attr is None:
            raise PersistenceFailure(
                f"Unknown column {column} on {model.__tablename__}"
            )
        return attr

    def insert(self, table, row):
        """Insert one row and return it (with generated id) as a dict.

        Raises DuplicateKeyError on a unique violation,
        PersistenceFailure on any other database error.
        """
        model = self._model(table)
        obj = model(**row)
        try:
            self.session.add(obj)
            self.session.commit()
        except IntegrityError as e:
            self.session.rollback()
            if is_unique_violation(e):
                raise DuplicateKeyError(
                    f"duplicate key value violates unique constraint on {table}"
                ) from e
            raise PersistenceFailure(str(e.orig or e)) from e
        except SQLAlchemyError as e:
            self.session.rollback()
            raise PersistenceFailure(str(e)) from e
        return row_to_dict(obj)

    def select_one(self, table, column, value):
        """Return the row where column == value as a dict, or None."""
        model = self._model(table)
        try:
            obj = self.session.query(model).filter(
                self._column(model, column) == value
            ).first()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise PersistenceFailure(str(e)) from e
        return row_to_dict(obj) if obj is not None else None

    def select_many(self, table, column=None, values=None, limit=None):
        """Return rows (optionally where column IN values) in store order.

        Store order is created_at, then id, so batch selection is
        deterministic.
        """
        model = self._model(table)
        query = self.session.query(model)
        if column is not None:
            query = query.filter(self._column(model, column).in_(values or []))
        query = query.order_by(model.created_at.asc(), model.id.asc())
        if limit is not None:
            query = query.limit(limit)
        try:
            return [row_to_dict(obj) for obj in query.all()]
        except SQLAlchemyError as e:
            self.session.rollback()
            raise PersistenceFailure(str(e)) from e

    def update(self, table, values, column, value):
        """Apply a partial update to rows where column == value.

        Returns the number of rows matched.
        """
        model = self._model(table)
        try:
            count = (
                self.session.query(model)
                .filter(self._column(model, column) == value)
                .update(values, synchronize_session=False)
            )
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise PersistenceFailure(str(e)) from e
        # Other callers may hold stale copies of the updated rows
        self.session.expire_all()
        return count
