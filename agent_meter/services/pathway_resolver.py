"""
Pathway 选择

在多个带条件的候选 prompt 中选出一个：
1. 只有一个候选时直接使用
2. 过滤出所有条件都满足的候选（无条件的候选总是匹配）
3. 按 order 升序取第一个，order 相同时保持声明顺序
4. 没有候选匹配时回退到第一个声明的候选（记录日志，不是错误）
"""

import logging
import math
from typing import Any, Mapping, Sequence

from agent_meter.models import (
    Condition,
    ConditionOperator,
    PathwayResolution,
    PromptVariant,
)

logger = logging.getLogger(__name__)


def _parse_number(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return math.nan


def condition_satisfied(condition: Condition, context: Mapping[str, Any]) -> bool:
    """
    判断单个条件是否满足

    变量缺失（键不存在或值为 None）时只有 notExists 满足。
    """
    value = context.get(condition.variable)
    operator = condition.operator

    if value is None:
        return operator == ConditionOperator.NOT_EXISTS

    if operator == ConditionOperator.EQUALS:
        return condition.value is not None and str(value) == condition.value
    if operator == ConditionOperator.CONTAINS:
        return condition.value is not None and condition.value in str(value)
    if operator == ConditionOperator.GREATER_THAN:
        # NaN 参与比较恒为 False
        return _parse_number(value) > _parse_number(condition.value)
    if operator == ConditionOperator.LESS_THAN:
        return _parse_number(value) < _parse_number(condition.value)
    if operator == ConditionOperator.EXISTS:
        return True
    return False


def variant_matches(variant: PromptVariant, context: Mapping[str, Any]) -> bool:
    """所有条件满足时匹配；空条件列表总是匹配"""
    return all(condition_satisfied(c, context) for c in variant.conditions)


class PathwayResolver:
    """
    Pathway 选择器（纯函数，无状态）

    Usage:
        resolver = PathwayResolver()
        resolution = resolver.select(agent.prompt_variants, {"age": "25"})
        prompt = resolution.content or agent.system_prompt
    """

    def select(
        self,
        variants: Sequence[PromptVariant],
        context: Mapping[str, Any],
    ) -> PathwayResolution:
        """选择候选，返回内容与命中信息"""
        if not variants:
            return PathwayResolution(content="")

        if len(variants) == 1:
            return PathwayResolution(content=variants[0].content, variant_name=variants[0].name)

        matching = [v for v in variants if variant_matches(v, context)]
        if matching:
            # sorted 是稳定排序，order 相同时保持声明顺序
            chosen = sorted(matching, key=lambda v: v.order)[0]
            logger.debug(f"Pathway selected: {chosen.name} (order={chosen.order})")
            return PathwayResolution(content=chosen.content, variant_name=chosen.name)

        first = variants[0]
        logger.info(
            f"VariantResolutionFallback: no pathway matched "
            f"{sorted(context.keys())}, using first variant '{first.name}'"
        )
        return PathwayResolution(content=first.content, variant_name=first.name, fallback=True)

    def resolve(
        self,
        variants: Sequence[PromptVariant],
        context: Mapping[str, Any],
    ) -> str:
        """只返回选中的 prompt 内容；没有候选时为空字符串"""
        return self.select(variants, context).content
