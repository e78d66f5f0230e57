from sqlalchemy import Column, DateTime, ForeignKey, Integer, UniqueConstraint

from heartf.database import Base
from heartf.models.types import JSONType
from heartf.utils.clock import utcnow


class LeadFinderSearch(Base):
    __tablename__ = "lead_finder_searches"

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(Integer, ForeignKey("orgs.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    query = Column(JSONType, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class LeadFinderResult(Base):
    __tablename__ = "lead_finder_results"

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(Integer, ForeignKey("orgs.id", ondelete="CASCADE"), nullable=False, index=True)
    search_id = Column(Integer, ForeignKey("lead_finder_searches.id", ondelete="CASCADE"), nullable=False, index=True)
    prospect = Column(JSONType, nullable=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)


class LeadFinderImport(Base):
    __tablename__ = "lead_finder_imports"
    __table_args__ = (
        UniqueConstraint("search_id", "result_id", name="uq_lead_finder_imports_search_result"),
    )

    id = Column(Integer, primary_key=True, index=True)
    org_id = Column(Integer, ForeignKey("orgs.id", ondelete="CASCADE"), nullable=False, index=True)
    search_id = Column(Integer, ForeignKey("lead_finder_searches.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    result_id = Column(Integer, ForeignKey("lead_finder_results.id", ondelete="CASCADE"), nullable=False)
    lead_id = Column(Integer, nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
