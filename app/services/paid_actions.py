"""Run a credit-consuming action: authorize, debit, then call the text generator."""

from typing import Any, Awaitable, Callable

from beanie import PydanticObjectId

from app.core.config import get_settings
from app.core.exceptions import GenerationFailedError
from app.core.logging import get_logger
from app.services import credit_guard, ledger

log = get_logger(__name__)

TextGenerator = Callable[[Any], Awaitable[str]]


async def run_paid_action(
    account_id: PydanticObjectId,
    action_kind: str,
    required_credits: int,
    generate: TextGenerator,
    payload: Any,
) -> dict:
    """
    Credits are taken before generation. If the generator fails the caller gets
    GenerationFailedError; the debit is refunded only when
    REFUND_ON_GENERATION_FAILURE is set.
    """
    decision = await credit_guard.authorize(account_id, required_credits, action_kind)
    error = credit_guard.decision_error(decision)
    if error is not None:
        raise error
    debit = await ledger.debit(account_id, required_credits, action_kind)
    try:
        text = await generate(payload)
    except Exception as e:
        log.error("generation_failed", action_kind=action_kind, error=str(e), error_type=type(e).__name__)
        refunded = False
        if get_settings().refund_on_generation_failure:
            await ledger.refund(account_id, required_credits, action_kind, reason=str(e))
            refunded = True
        raise GenerationFailedError(details={"action_kind": action_kind, "refunded": refunded}) from e
    return {"text": text, "charged": required_credits, "new_balance": debit["new_balance"]}
