"""Edit instruction synthesis from defect reasons using LangChain."""

from typing import Protocol, Sequence

from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import BaseModel, Field

from .errors import SynthesisFailure
from .llm import Provider, get_chat_model
from .schemas import Reason


INSTRUCTION_SYSTEM_PROMPT = """You are an image correction assistant. You turn descriptions of image defects into one
instruction for an inpainting model that edits only a masked region of the image.

Guidelines:
1. **Fix Exactly These Defects**: address every listed defect and nothing else
2. **Preserve Everything Else**: style, palette, lighting, mood and untouched content must stay the same
3. **Be Concrete**: describe what the corrected region should look like, not what was wrong
4. **Stay Concise**: one short paragraph"""


class EditInstruction(BaseModel):
    """Instruction passed to the image edit back end."""

    prompt: str = Field(
        ...,
        description="Instruction asking to fix exactly the listed defects while preserving everything else",
    )


class EditInstructionSynthesizer(Protocol):
    """Turns defect reasons into one edit instruction."""

    async def synthesize(self, reasons: Sequence[Reason]) -> str:
        ...


class LLMInstructionSynthesizer:
    """Writes edit instructions with a chat model."""

    def __init__(self, provider: Provider | None = None, model=None):
        """Initialize the synthesizer.

        Args:
            provider: LLM provider to use. Uses config default if None.
            model: Pre-built structured-output model, mostly for tests.
        """
        self.provider = provider
        self._model = model

    @property
    def model(self):
        """Lazy-load the model with structured output."""
        if self._model is None:
            base_model = get_chat_model(provider=self.provider)
            self._model = base_model.with_structured_output(EditInstruction)
        return self._model

    async def synthesize(self, reasons: Sequence[Reason]) -> str:
        """Create one instruction covering every defect.

        Raises:
            SynthesisFailure: If no reasons are given or the model call fails.
        """
        if not reasons:
            raise SynthesisFailure("cannot write an edit instruction without defects")

        user_message = f"""Write the edit instruction for these defects:

{chr(10).join(f"- {r.text}" for r in reasons)}"""

        messages = [
            SystemMessage(content=INSTRUCTION_SYSTEM_PROMPT),
            HumanMessage(content=user_message),
        ]

        try:
            result = await self.model.ainvoke(messages)
        except Exception as exc:
            raise SynthesisFailure(f"edit instruction synthesis failed: {exc}") from exc

        # Handle dict response (fallback)
        if isinstance(result, dict):
            result = EditInstruction(prompt=result.get("prompt", ""))

        if not result.prompt.strip():
            raise SynthesisFailure("edit instruction synthesis returned an empty prompt")
        return result.prompt
