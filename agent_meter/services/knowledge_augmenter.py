"""
知识库增强

把 Agent 的知识条目追加到 system prompt 之后。没有条目时原样返回。
"""

from typing import Sequence

from agent_meter.models import KnowledgeEntry

KNOWLEDGE_HEADER = "KNOWLEDGE BASE INFORMATION:"

KNOWLEDGE_INSTRUCTION = (
    "Use the information from the KNOWLEDGE BASE when relevant to answer user queries. "
    "If the answer isn't in the knowledge base, respond based on your general knowledge "
    "but make it clear when you're doing so."
)


def format_entry(index: int, entry: KnowledgeEntry) -> str:
    """单个条目块，index 从 1 开始"""
    return f"[{index}] {entry.title}:\n{entry.content}"


class KnowledgeAugmenter:
    """
    知识库增强器（纯函数，无状态）

    输出结构：
        {base_prompt}

        KNOWLEDGE BASE INFORMATION:
        [1] title:
        content

        [2] ...

        {instruction}
    """

    def augment(self, base_prompt: str, entries: Sequence[KnowledgeEntry]) -> str:
        if not entries:
            return base_prompt

        blocks = "\n\n".join(format_entry(i, e) for i, e in enumerate(entries, start=1))
        knowledge = f"{KNOWLEDGE_HEADER}\n{blocks}\n\n{KNOWLEDGE_INSTRUCTION}"
        if not base_prompt:
            return knowledge
        return f"{base_prompt}\n\n{knowledge}"
