# src/meetbridge_backend/app/db/models.py

from sqlalchemy import (
    Column,
    String,
    Integer,
    ForeignKey,
    TIMESTAMP,
    func,
)
from sqlalchemy.orm import relationship

from .session import Base


class User(Base):
    """
    One row per identity ever seen, keyed by the provider-issued subject id.
    The primary key is what makes concurrent first logins collapse into a
    single row.
    """

    __tablename__ = "users"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=False, default="")

    created_at = Column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    tokens = relationship(
        "Token",
        back_populates="user",
        cascade="all, delete-orphan",
        order_by="Token.id",
    )


class Token(Base):
    """Opaque bearer token; append-only, owned by exactly one user."""

    __tablename__ = "tokens"

    id = Column(Integer, primary_key=True, autoincrement=True)
    token_id = Column(String, unique=True, nullable=False)
    user_id = Column(
        String,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    created_at = Column(
        TIMESTAMP(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    user = relationship("User", back_populates="tokens")


class AllowedEmail(Base):
    """Allow-list entry; emails are stored lower-cased."""

    __tablename__ = "allowed_emails"

    email = Column(String, primary_key=True)
