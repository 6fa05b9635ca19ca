# demo_mcp_list_work_orders.py
# Version: v1
#
# Demo: call the MCP-style work-order tasks directly and print results.
#
# Usage (bash), against the in-memory mock:
#
#   export OM_MOCK_MODE=1
#   export ARCGIS_LAYER0=https://mock/FeatureServer/0
#   export ARCGIS_LAYER1=https://mock/FeatureServer/1
#   python demo_mcp_list_work_orders.py

import asyncio
from typing import Any, Dict, List

from arcgis_om_mcp.tools import tasks


async def main() -> None:
    print("Calling MCP task: list_work_orders()")
    result: Dict[str, Any] = await tasks.list_work_orders()

    orders: List[Dict[str, Any]] = result.get("work_orders", [])
    print(f"Work orders returned: {len(orders)}")

    if not orders:
        print("No work orders returned.")
        return

    for wo in orders:
        oid = wo.get("objectid")
        text = wo.get("om_text")
        org = wo.get("organizac")
        print(f"- objectid={oid}  org={org}  text={text!r}")

    first = orders[0].get("objectid")
    if first is None:
        return

    activities = await tasks.list_activities(int(first))
    print(f"Activities of objectid={int(first)}: {activities['count']}")


if __name__ == "__main__":
    asyncio.run(main())
