from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, UniqueConstraint

from heartf.database import Base
from heartf.models.types import JSONType
from heartf.utils.clock import utcnow


class ClientState(Base):
    __tablename__ = "client_state"
    __table_args__ = (
        UniqueConstraint("org_id", "state_key", name="uq_client_state_org_key"),
    )

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(Integer, ForeignKey("orgs.id", ondelete="CASCADE"), nullable=False, index=True)
    state_key = Column(String(64), nullable=False)
    payload = Column(JSONType, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
