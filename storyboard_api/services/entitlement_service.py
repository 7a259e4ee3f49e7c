"""
생성 권한(무료 횟수/크레딧) 서비스 - Redis Lua를 활용한 원자적 처리
"""

import asyncio
import json
import logging
import uuid
from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from redis.asyncio import Redis
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from storyboard_api.core.config import settings
from storyboard_api.core.errors import InsufficientCredits
from storyboard_api.models import CreditAccount, CreditTransaction
from storyboard_api.schemas.credit import EntitlementDecision, CreditStatusResponse

logger = logging.getLogger(__name__)


class CreditStore:
    """크레딧 저장소 인터페이스"""

    async def get_balance(self, owner_id: str) -> int:
        raise NotImplementedError

    async def get_free_stories_used(self, owner_id: str) -> int:
        raise NotImplementedError

    async def authorize_and_debit(
        self,
        owner_id: str,
        cost: int,
        free_quota: int,
        reference_id: Optional[str] = None,
    ) -> EntitlementDecision:
        """무료 횟수 소진/크레딧 차감을 판단과 동시에 한 번에 수행. 잔액 부족이면 InsufficientCredits"""
        raise NotImplementedError

    async def grant_credits(self, owner_id: str, amount: int, description: str) -> int:
        raise NotImplementedError


class RedisCreditStore(CreditStore):
    """Redis 캐시 + Lua 스크립트 기반 크레딧 저장소 (DB가 원장)"""

    # KEYS[1]=잔액, KEYS[2]=무료 사용 횟수, KEYS[3]=거래 로그
    # 반환: {상태, 잔액, 무료사용} 상태: -1 캐시 미스, 0 잔액 부족, 1 유료 차감, 2 무료 사용
    AUTHORIZE_SCRIPT = """
    local balance_key = KEYS[1]
    local free_key = KEYS[2]
    local log_key = KEYS[3]
    local cost = tonumber(ARGV[1])
    local quota = tonumber(ARGV[2])
    local ttl = tonumber(ARGV[3])
    local transaction_data = ARGV[4]

    local balance = redis.call('GET', balance_key)
    local free_used = redis.call('GET', free_key)

    -- 캐시가 없으면 DB 조회 필요
    if (not balance) or (not free_used) then
        return {-1, 0, 0}
    end
    balance = tonumber(balance)
    free_used = tonumber(free_used)

    -- 무료 횟수가 남아 있으면 차감 없이 횟수만 소진
    if free_used < quota then
        free_used = redis.call('INCR', free_key)
        redis.call('EXPIRE', free_key, ttl)
        redis.call('EXPIRE', balance_key, ttl)
        return {2, balance, free_used}
    end

    -- 잔액 부족 체크 (변경 없음)
    if balance < cost then
        return {0, balance, free_used}
    end

    balance = redis.call('DECRBY', balance_key, cost)

    -- 거래 로그 추가 (최근 100개만 유지)
    redis.call('LPUSH', log_key, transaction_data)
    redis.call('LTRIM', log_key, 0, 99)

    redis.call('EXPIRE', balance_key, ttl)
    redis.call('EXPIRE', free_key, ttl)
    return {1, balance, free_used}
    """

    # 캐시된 잔액이 있을 때만 증가 (없으면 -1)
    GRANT_SCRIPT = """
    if redis.call('EXISTS', KEYS[1]) == 1 then
        local balance = redis.call('INCRBY', KEYS[1], tonumber(ARGV[1]))
        redis.call('EXPIRE', KEYS[1], tonumber(ARGV[2]))
        return balance
    end
    return -1
    """

    def __init__(self, redis: Redis, session_factory: async_sessionmaker, ttl: Optional[int] = None):
        self.redis = redis
        self.session_factory = session_factory
        self.ttl = ttl or settings.CREDIT_CACHE_TTL_SECONDS

    @staticmethod
    def _keys(owner_id: str) -> Tuple[str, str, str]:
        return (
            f"credits:{owner_id}:balance",
            f"credits:{owner_id}:free_used",
            f"credits:{owner_id}:log",
        )

    async def _load_account(self, owner_id: str) -> Tuple[int, int]:
        """DB에서 (잔액, 무료 사용 횟수) 조회. 계정이 없으면 (0, 0)"""
        async with self.session_factory() as session:
            result = await session.execute(
                select(CreditAccount).where(CreditAccount.owner_id == owner_id)
            )
            account = result.scalar_one_or_none()
        if account is None:
            return 0, 0
        return int(account.balance or 0), int(account.free_stories_used or 0)

    async def _warm_cache(self, owner_id: str) -> Tuple[int, int]:
        balance_key, free_key, _ = self._keys(owner_id)
        balance, free_used = await self._load_account(owner_id)
        # NX: 그 사이 다른 요청이 채운 값(차감 반영)을 덮어쓰지 않음
        await self.redis.set(balance_key, balance, ex=self.ttl, nx=True)
        await self.redis.set(free_key, free_used, ex=self.ttl, nx=True)
        return balance, free_used

    async def get_balance(self, owner_id: str) -> int:
        """크레딧 잔액 조회 (Redis 우선)"""
        balance_key, _, _ = self._keys(owner_id)
        cached = await self.redis.get(balance_key)
        if cached is not None:
            return int(cached)
        balance, _ = await self._warm_cache(owner_id)
        return balance

    async def get_free_stories_used(self, owner_id: str) -> int:
        """무료 스토리 사용 횟수 조회 (Redis 우선)"""
        _, free_key, _ = self._keys(owner_id)
        cached = await self.redis.get(free_key)
        if cached is not None:
            return int(cached)
        _, free_used = await self._warm_cache(owner_id)
        return free_used

    async def authorize_and_debit(
        self,
        owner_id: str,
        cost: int,
        free_quota: int,
        reference_id: Optional[str] = None,
    ) -> EntitlementDecision:
        """Redis Lua를 사용한 원자적 판단 + 차감"""
        if cost <= 0:
            raise ValueError("차감 크레딧은 0보다 커야 합니다")

        transaction_id = str(uuid.uuid4())
        transaction_data = json.dumps({
            "id": transaction_id,
            "amount": cost,
            "reason": "storyboard",
            "reference_id": reference_id,
            "timestamp": datetime.utcnow().isoformat(),
        })
        keys = list(self._keys(owner_id))
        args = [cost, free_quota, self.ttl, transaction_data]

        result = await self.redis.eval(self.AUTHORIZE_SCRIPT, len(keys), *keys, *args)
        status, balance, free_used = int(result[0]), int(result[1]), int(result[2])

        # 캐시 미스 (-1): DB에서 조회해 캐시를 채운 뒤 재시도
        if status == -1:
            await self._warm_cache(owner_id)
            result = await self.redis.eval(self.AUTHORIZE_SCRIPT, len(keys), *keys, *args)
            status, balance, free_used = int(result[0]), int(result[1]), int(result[2])

        if status == 0:
            raise InsufficientCredits(balance=balance, cost=cost)
        if status == -1:
            raise RuntimeError("크레딧 캐시를 불러오지 못했습니다")

        if status == 2:
            decision = EntitlementDecision(kind="free", debited=0, balance_after=balance, free_stories_used=free_used)
        else:
            decision = EntitlementDecision(kind="paid", debited=cost, balance_after=balance, free_stories_used=free_used)

        await self._save_transaction_to_db(owner_id, transaction_id, decision, reference_id)
        return decision

    async def _save_transaction_to_db(
        self,
        owner_id: str,
        transaction_id: str,
        decision: EntitlementDecision,
        reference_id: Optional[str] = None,
    ) -> None:
        """원장(DB) 반영. 실패해도 판단 결과는 유지 (로깅만)

        동시 요청의 커밋 순서가 뒤바뀔 수 있으므로 잔액/횟수는 증감으로만 반영한다.
        """
        try:
            async with self.session_factory() as session:
                await self._ensure_account(session, owner_id)
                await session.execute(
                    update(CreditAccount)
                    .where(CreditAccount.owner_id == owner_id)
                    .values(
                        balance=CreditAccount.balance - decision.debited,
                        free_stories_used=CreditAccount.free_stories_used + (1 if decision.kind == "free" else 0),
                        total_used=func.coalesce(CreditAccount.total_used, 0) + decision.debited,
                    )
                )

                session.add(CreditTransaction(
                    id=uuid.UUID(transaction_id),
                    owner_id=owner_id,
                    type="free" if decision.kind == "free" else "use",
                    amount=-decision.debited,
                    balance_after=decision.balance_after,
                    description="스토리보드 생성" + (" (무료)" if decision.kind == "free" else ""),
                    reference_type="storyboard",
                    reference_id=reference_id,
                ))
                await session.commit()
        except Exception as e:
            logger.error(f"크레딧 거래 내역 DB 저장 실패 (owner={owner_id}): {e}")

    @staticmethod
    async def _ensure_account(session, owner_id: str) -> None:
        """계정 행이 없으면 0으로 생성 (증감 UPDATE 대상 확보)"""
        result = await session.execute(
            select(CreditAccount.owner_id).where(CreditAccount.owner_id == owner_id)
        )
        if result.scalar_one_or_none() is None:
            session.add(CreditAccount(owner_id=owner_id, balance=0, free_stories_used=0, total_used=0))
            await session.flush()

    async def grant_credits(self, owner_id: str, amount: int, description: str) -> int:
        """크레딧 지급 (DB 증감 반영 후 캐시 잔액에도 같은 만큼 더함)

        캐시를 지우면 아직 DB에 반영되지 않은 차감이 사라질 수 있으므로 지우지 않는다.
        """
        if amount <= 0:
            raise ValueError("지급 크레딧은 0보다 커야 합니다")

        async with self.session_factory() as session:
            await self._ensure_account(session, owner_id)
            await session.execute(
                update(CreditAccount)
                .where(CreditAccount.owner_id == owner_id)
                .values(balance=CreditAccount.balance + amount)
            )
            result = await session.execute(
                select(CreditAccount.balance).where(CreditAccount.owner_id == owner_id)
            )
            db_balance = int(result.scalar_one())
            session.add(CreditTransaction(
                owner_id=owner_id,
                type="charge",
                amount=amount,
                balance_after=db_balance,
                description=description,
            ))
            await session.commit()

        balance_key, _, _ = self._keys(owner_id)
        cached = int(await self.redis.eval(self.GRANT_SCRIPT, 1, balance_key, amount, self.ttl))
        # 캐시가 없으면 다음 조회 때 DB(지급 반영됨)에서 채워진다
        return cached if cached >= 0 else db_balance


class InMemoryCreditStore(CreditStore):
    """프로세스 메모리 크레딧 저장소 (개발/테스트용)"""

    def __init__(self, accounts: Optional[Dict[str, Tuple[int, int]]] = None):
        # owner_id -> [잔액, 무료 사용 횟수]
        self._accounts: Dict[str, List[int]] = {
            owner: [int(balance), int(free_used)] for owner, (balance, free_used) in (accounts or {}).items()
        }
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self.transactions: List[dict] = []

    def _account(self, owner_id: str) -> List[int]:
        return self._accounts.setdefault(owner_id, [0, 0])

    async def get_balance(self, owner_id: str) -> int:
        return self._account(owner_id)[0]

    async def get_free_stories_used(self, owner_id: str) -> int:
        return self._account(owner_id)[1]

    async def authorize_and_debit(
        self,
        owner_id: str,
        cost: int,
        free_quota: int,
        reference_id: Optional[str] = None,
    ) -> EntitlementDecision:
        if cost <= 0:
            raise ValueError("차감 크레딧은 0보다 커야 합니다")

        async with self._locks[owner_id]:
            account = self._account(owner_id)
            if account[1] < free_quota:
                account[1] += 1
                decision = EntitlementDecision(
                    kind="free", debited=0, balance_after=account[0], free_stories_used=account[1]
                )
            elif account[0] < cost:
                raise InsufficientCredits(balance=account[0], cost=cost)
            else:
                account[0] -= cost
                decision = EntitlementDecision(
                    kind="paid", debited=cost, balance_after=account[0], free_stories_used=account[1]
                )
            self.transactions.append({
                "owner_id": owner_id,
                "amount": -decision.debited,
                "balance_after": decision.balance_after,
                "reference_id": reference_id,
            })
            return decision

    async def grant_credits(self, owner_id: str, amount: int, description: str) -> int:
        if amount <= 0:
            raise ValueError("지급 크레딧은 0보다 커야 합니다")
        async with self._locks[owner_id]:
            account = self._account(owner_id)
            account[0] += amount
            return account[0]


class EntitlementGate:
    """스토리보드 생성 허가 (무료 횟수 우선, 이후 크레딧 차감)"""

    def __init__(self, store: CreditStore, free_quota: Optional[int] = None):
        self.store = store
        self.free_quota = settings.FREE_STORY_QUOTA if free_quota is None else free_quota

    async def authorize(self, owner_id: str, cost: int, reference_id: Optional[str] = None) -> EntitlementDecision:
        """생성 허가. 잔액 부족이면 InsufficientCredits (변경 없음)

        한 요청당 최대 한 번 차감하며, 무료 횟수가 남아 있으면 차감하지 않는다.
        하위 단계가 실패해도 환불하지 않는다.
        """
        try:
            decision = await self.store.authorize_and_debit(owner_id, cost, self.free_quota, reference_id)
        except InsufficientCredits as e:
            logger.info(f"크레딧 부족으로 생성 거부: owner={owner_id} balance={e.balance} cost={e.cost}")
            raise
        logger.info(
            f"생성 허가: owner={owner_id} kind={decision.kind} debited={decision.debited} "
            f"balance={decision.balance_after} free_used={decision.free_stories_used}"
        )
        return decision

    async def status(self, owner_id: str, cost: Optional[int] = None) -> CreditStatusResponse:
        """크레딧 현황"""
        balance = await self.store.get_balance(owner_id)
        free_used = await self.store.get_free_stories_used(owner_id)
        return CreditStatusResponse(
            balance=balance,
            free_stories_used=free_used,
            free_story_quota=self.free_quota,
            free_stories_remaining=max(0, self.free_quota - free_used),
            storyboard_cost=cost if cost is not None else settings.STORYBOARD_CREDIT_COST,
        )
