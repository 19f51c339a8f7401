"""
额度账本

预留-结算两阶段扣费：
- reserve: 请求开始前原子预扣
- commit: 生成成功，预留转为最终扣费（余额不再变化）
- release: 生成失败，对称回退

每个预留只能结算一次。
"""

import logging
from dataclasses import dataclass

from agent_meter.core.correlation import generate_id
from agent_meter.core.exceptions import (
    InsufficientCreditsError,
    ItemNotFoundError,
    ReservationStateError,
)
from agent_meter.models import CreditAccount, ModelTier, ReservationState
from agent_meter.services.repositories import CreditRepository

logger = logging.getLogger(__name__)


DEFAULT_TOTAL_CREDITS = 100

# 模型档位计费
TIER_COSTS: dict[ModelTier, int] = {
    ModelTier.SMALL: 1,
    ModelTier.LARGE: 2,
    ModelTier.PREMIUM: 2,
}


def credit_cost(tier: ModelTier | str) -> int:
    """单次调用的额度消耗"""
    return TIER_COSTS[ModelTier(tier)]


@dataclass
class Reservation:
    """额度预留，结算前为 pending"""
    reservation_id: str
    owner_id: str
    cost: int
    state: ReservationState = ReservationState.PENDING

    @property
    def is_settled(self) -> bool:
        return self.state != ReservationState.PENDING


class CreditLedger:
    """
    额度账本

    Usage:
        ledger = CreditLedger(repos.credits)

        reservation = await ledger.reserve("user-1", credit_cost(agent.model_tier))
        result = await dispatcher.dispatch(...)
        if result.success:
            await ledger.commit(reservation)
        else:
            await ledger.release(reservation)
    """

    def __init__(
        self,
        repository: CreditRepository,
        default_total_credits: int = DEFAULT_TOTAL_CREDITS,
    ):
        self._repo = repository
        self._default_total = default_total_credits

    async def get_account(self, owner_id: str) -> CreditAccount:
        """获取账户，首次使用时按默认额度创建"""
        return await self._repo.get_or_create(owner_id, self._default_total)

    async def reserve(self, owner_id: str, cost: int) -> Reservation:
        """
        原子预扣额度

        Raises:
            InsufficientCreditsError: 余额不足，账户不变
        """
        if cost < 0:
            raise ValueError(f"Credit cost must be non-negative: {cost}")

        account = await self.get_account(owner_id)
        debited = await self._repo.try_debit(owner_id, cost)
        if debited is None:
            # 条件更新未命中，重新读取以报告真实余额
            current = await self._repo.get(owner_id) or account
            logger.warning(
                f"Insufficient credits: owner={owner_id}, "
                f"available={current.available_credits}, required={cost}"
            )
            raise InsufficientCreditsError(
                owner_id=owner_id,
                available_credits=current.available_credits,
                required_credits=cost,
            )

        reservation = Reservation(
            reservation_id=f"rsv_{generate_id()}",
            owner_id=owner_id,
            cost=cost,
        )
        logger.debug(
            f"Credits reserved: {reservation.reservation_id}, owner={owner_id}, "
            f"cost={cost}, used={debited.used_credits}/{debited.total_credits}"
        )
        return reservation

    async def commit(self, reservation: Reservation) -> None:
        """预留转为最终扣费"""
        self._settle(reservation, ReservationState.COMMITTED)
        logger.debug(f"Reservation committed: {reservation.reservation_id}")

    async def release(self, reservation: Reservation) -> None:
        """回退预留"""
        self._settle(reservation, ReservationState.RELEASED)
        account = await self._repo.credit_back(reservation.owner_id, reservation.cost)
        if account is None:
            # 预留期间账户被重置，已用额度低于预留值
            logger.warning(
                f"Release skipped for {reservation.reservation_id}: "
                f"used credits of {reservation.owner_id} below {reservation.cost}"
            )
            return
        logger.debug(
            f"Reservation released: {reservation.reservation_id}, "
            f"used={account.used_credits}/{account.total_credits}"
        )

    def _settle(self, reservation: Reservation, state: ReservationState) -> None:
        if reservation.is_settled:
            raise ReservationStateError(reservation.reservation_id, reservation.state.value)
        reservation.state = state

    async def reset_credits(self, owner_id: str) -> CreditAccount:
        """管理操作：已用额度清零"""
        await self.get_account(owner_id)
        account = await self._repo.reset(owner_id)
        logger.info(f"Credits reset: owner={owner_id}")
        return account

    async def update_total_credits(self, owner_id: str, new_total: int) -> CreditAccount:
        """
        套餐变更

        已用额度超过新总额时截断为新总额。

        Raises:
            ValueError: new_total 为负数
            ItemNotFoundError: 账户不存在
        """
        if new_total < 0:
            raise ValueError(f"Total credits must be non-negative: {new_total}")

        account = await self._repo.set_total(owner_id, new_total)
        if account is None:
            raise ItemNotFoundError(
                f"Credit account not found: {owner_id}",
                detail={"owner_id": owner_id},
            )
        logger.info(
            f"Total credits updated: owner={owner_id}, total={new_total}, "
            f"used={account.used_credits}"
        )
        return account
