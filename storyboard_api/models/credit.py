"""
크레딧(과금) 관련 모델
"""

from sqlalchemy import Column, String, Integer, DateTime, CheckConstraint
from sqlalchemy.sql import func
import uuid

from storyboard_api.core.database import Base, UUID


class CreditAccount(Base):
    """사용자 크레딧 잔액 + 무료 스토리 사용 횟수"""
    __tablename__ = "credit_accounts"

    owner_id = Column(String(64), primary_key=True)
    balance = Column(Integer, nullable=False, default=0)
    free_stories_used = Column(Integer, nullable=False, default=0)
    total_used = Column(Integer, default=0)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        CheckConstraint('balance >= 0', name='check_balance_positive'),
    )

    def __repr__(self):
        return f"<CreditAccount(owner_id={self.owner_id}, balance={self.balance}, free_stories_used={self.free_stories_used})>"


class CreditTransaction(Base):
    """크레딧 거래 내역"""
    __tablename__ = "credit_transactions"

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    owner_id = Column(String(64), nullable=False, index=True)
    type = Column(String(20), nullable=False)  # use, free
    amount = Column(Integer, nullable=False)  # 음수: 사용, 0: 무료 스토리
    balance_after = Column(Integer, nullable=False)
    description = Column(String(200))
    reference_type = Column(String(50))  # storyboard
    reference_id = Column(String(64))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
