"""Toolgate quickstart: one risk-gated turn, then approve what it asked for."""

import asyncio

from toolgate import Toolgate


async def main() -> None:
    gate = Toolgate()
    result = await gate.run_turn("quickstart", "List the files in /workspace/project")

    print(f"Success: {result.success}  used tools: {result.used_tools}")
    print(f"\n{result.message}")

    for request in gate.approvals.get_pending_for_conversation("quickstart"):
        print(f"\nPending: {request.operation_summary} (risk {request.risk_score})")
        gate.approvals.approve_request(request.id, "quickstart-user")
        outcome = await gate.run_approved(request.id)
        print(f"Ran after approval: success={outcome.success}")


asyncio.run(main())
