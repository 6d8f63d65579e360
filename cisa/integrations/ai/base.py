from typing import Protocol


class TextModel(Protocol):
    """Black-box text completion: prompt in, raw text out."""

    async def generate(self, prompt: str) -> str: ...
