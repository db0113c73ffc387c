from sqlalchemy import JSON, Boolean, Column, DateTime, Integer, String

from ..db import Base


class WebhookSubscriptionRow(Base):
    __tablename__ = "webhook_subscriptions"
    seq = Column(Integer, primary_key=True, autoincrement=True)   # registration order
    subscription_id = Column(String(36), unique=True, nullable=False)
    tenant_id = Column(String(64), index=True, nullable=False)
    url = Column(String(2048), nullable=False)
    secret = Column(String(255), nullable=False)
    events = Column(JSON, nullable=False, default=list)
    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
