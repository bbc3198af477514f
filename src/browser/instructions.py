"""Closed interpreter for form-fill instructions.

Instructions come from two places: hard-coded district layouts and model
output. Both run through the same interpreter. Only the actions in
ALLOWED_ACTIONS are executed; anything else is rejected before touching the
page, and a failing instruction is logged and skipped so the rest of the
fill can continue.
"""

from functools import wraps
from typing import Dict, Any, List, Optional
from loguru import logger
from pydantic import BaseModel, ValidationError, field_validator, model_validator

ALLOWED_ACTIONS = ('fill', 'select', 'click', 'check', 'wait')

DEFAULT_WAIT_MS = 1000
MAX_WAIT_MS = 10000


class FormInstruction(BaseModel):
    """One validated form-fill step"""
    action: str
    selector: Optional[str] = None
    value: Optional[Any] = None
    duration: Optional[int] = None  # milliseconds, for 'wait'
    description: Optional[str] = None

    @field_validator('action')
    @classmethod
    def action_allowed(cls, v: str) -> str:
        action = v.strip().lower()
        if action not in ALLOWED_ACTIONS:
            raise ValueError(f"Unsupported action '{v}'")
        return action

    @model_validator(mode="after")
    def selector_required(self) -> "FormInstruction":
        if self.action != "wait" and not self.selector:
            raise ValueError(f"Action '{self.action}' needs a selector")
        return self


def isolate_instruction_errors(step_func):
    """
    A decorator that contains failures of a single instruction.
    It logs the error with the correlation id, records it to metrics and
    returns False instead of raising.
    """
    @wraps(step_func)
    async def wrapper(self, instruction: FormInstruction, **kwargs):
        try:
            return await step_func(self, instruction, **kwargs)
        except Exception as e:
            logger.warning(
                f"[{self.correlation_id}] Failed to execute instruction "
                f"{instruction.action} {instruction.selector}: {e}"
            )
            if self.metrics:
                self.metrics.record_failure(
                    failure_type="form_instruction",
                    component="webform_interpreter",
                    reason=str(e),
                    context={"instruction": instruction.model_dump()}
                )
            return False
    return wrapper


class InstructionInterpreter:
    """Execute form instructions against a BrowserSession"""

    def __init__(self, session, correlation_id: str = "N/A", metrics=None):
        self.session = session
        self.correlation_id = correlation_id
        self.metrics = metrics

    def validate(self, raw: Any) -> Optional[FormInstruction]:
        """Parse a raw instruction dict; None when it is not an allowed, well-formed step"""
        if isinstance(raw, FormInstruction):
            return raw
        if not isinstance(raw, dict):
            logger.warning(f"[{self.correlation_id}] Rejected non-object instruction: {raw!r}")
            return None
        try:
            return FormInstruction(**raw)
        except (ValidationError, ValueError) as e:
            logger.warning(f"[{self.correlation_id}] Rejected instruction {raw}: {e}")
            return None

    @isolate_instruction_errors
    async def execute(self, instruction: FormInstruction) -> bool:
        """Run one validated instruction; False when skipped"""
        action = instruction.action

        if action == 'fill':
            if instruction.value in (None, ''):
                return False
            await self.session.fill_text_field(instruction.selector, instruction.value)
        elif action == 'select':
            if instruction.value in (None, ''):
                return False
            await self.session.select_dropdown(instruction.selector, instruction.value)
        elif action == 'click':
            await self.session.click(instruction.selector)
        elif action == 'check':
            await self.session.check(instruction.selector)
        elif action == 'wait':
            duration = min(instruction.duration or DEFAULT_WAIT_MS, MAX_WAIT_MS)
            await self.session.wait(duration)
        else:
            raise ValueError(f"Unhandled action '{action}'")

        return True

    async def run(self, raw_instructions: List[Any]) -> Dict[str, int]:
        """
        Validate and execute instructions in order

        Args:
            raw_instructions: Instruction dicts ({action, selector, value?, duration?})

        Returns:
            Counts of executed, rejected and failed/skipped instructions
        """
        summary = {'executed': 0, 'rejected': 0, 'skipped': 0}

        for raw in raw_instructions:
            instruction = self.validate(raw)
            if instruction is None:
                summary['rejected'] += 1
                continue

            if await self.execute(instruction):
                summary['executed'] += 1
            else:
                summary['skipped'] += 1

        logger.info(
            f"[{self.correlation_id}] Instructions: {summary['executed']} executed, "
            f"{summary['skipped']} skipped, {summary['rejected']} rejected"
        )
        return summary
