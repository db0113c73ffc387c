from sqlalchemy import JSON, Column, DateTime, String

from ..db import Base


class ApiKeyRow(Base):
    __tablename__ = "api_keys"
    key_id = Column(String(36), primary_key=True)
    tenant_id = Column(String(64), index=True, nullable=False)
    hash = Column(String(64), unique=True, index=True, nullable=False)   # sha256 of the secret
    scopes = Column(JSON, nullable=False, default=list)
    name = Column(String(255), nullable=False, default="")
    created_at = Column(DateTime(timezone=True), nullable=False)
    revoked_at = Column(DateTime(timezone=True), nullable=True)
