"""
End-to-end demo: pay for premium market data over x402 with mock proofs.

Starts the gated-data server on a local port, fetches the same endpoint a
few times through GatedDataClient and prints what both sides recorded.
"""

import threading
import time

import httpx
import uvicorn

from mandate_agent.config import ServerSettings
from mandate_agent.errors import PaymentError
from mandate_agent.x402_client import GatedDataClient
from mandate_agent.x402_server import GatedDataServer, create_app
from mandate_agent.x402_types import PaymentConfig

HOST = "127.0.0.1"
PORT = 8402
BASE_URL = f"http://{HOST}:{PORT}"


def run_server(server: GatedDataServer):
    uvicorn.run(create_app(server), host=HOST, port=PORT, log_level="error")


def main():
    print("🚀 mandate-agent x402 round trip (mock payments)")
    print("=" * 48)

    server = GatedDataServer(ServerSettings(price_wei=100))
    threading.Thread(target=run_server, args=(server,), daemon=True).start()
    time.sleep(1)
    print(f"1️⃣  Server running on {BASE_URL}")

    resp = httpx.get(f"{BASE_URL}/market/1/data")
    print(f"2️⃣  Unpaid request: {resp.status_code} {resp.headers.get('WWW-Authenticate', '')[:40]}...")

    client = GatedDataClient(BASE_URL, PaymentConfig(agent_id=1, mock_balance=250))
    print("3️⃣  Paying with a balance of 250 wei")
    for attempt in range(3):
        try:
            data = client.fetch_data("/market/1/data")
            print(f"   ✅ #{attempt + 1}: yesProbability={data.data['yesProbability']} cost={data.cost}")
        except PaymentError as e:
            print(f"   ❌ #{attempt + 1}: {e}")
    client.close()

    print("4️⃣  Client summary:")
    for key, summary in client.get_usage_summary().items():
        print(f"   {key}: {summary.count} requests, {summary.total_cost} wei")

    logs = httpx.get(f"{BASE_URL}/admin/logs").json()
    print("5️⃣  Server summary:")
    for key, summary in logs["summary"].items():
        print(f"   {key}: {summary['count']} requests, {summary['totalCost']} wei")


if __name__ == "__main__":
    main()
