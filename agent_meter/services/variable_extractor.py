"""
变量抽取

从用户输入中按 "name: value" 形式抽取 Agent 声明的变量，
结果作为 pathway 条件的上下文。
"""

import logging
import re
from typing import Sequence

from agent_meter.models import VariableDefinition

logger = logging.getLogger(__name__)

NOT_FOUND = "[Not found]"


class VariableExtractor:
    """
    变量抽取器

    Usage:
        extractor = VariableExtractor(agent.variables)
        extractor.extract("Country: US\\nAge: 25")
        # {"country": "US", "age": "25"}
    """

    def __init__(self, variables: Sequence[VariableDefinition]):
        self._variables = tuple(variables)
        # 变量名后跟空白或冒号，取到行尾
        self._patterns = {
            v.name: re.compile(rf"{re.escape(v.name)}[\s:]+(.*?)(?=[\n\r]|$)", re.IGNORECASE)
            for v in self._variables
        }

    @property
    def variables(self) -> tuple[VariableDefinition, ...]:
        return self._variables

    def extract(self, text: str) -> dict[str, str]:
        """
        抽取变量

        未匹配的必填变量值为 "[Not found]"，未匹配的可选变量不出现在结果中。
        """
        extracted: dict[str, str] = {}
        for variable in self._variables:
            match = self._patterns[variable.name].search(text)
            value = match.group(1).strip() if match else ""
            if value:
                extracted[variable.name] = value
            elif variable.required:
                extracted[variable.name] = NOT_FOUND

        if extracted:
            logger.debug(f"Variables extracted: {sorted(extracted)}")
        return extracted
