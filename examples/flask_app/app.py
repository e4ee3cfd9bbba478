"""
Manual Flask integration demo for sentinel_sdk.

Every request to this app is captured by the LogSentinel middleware,
buffered in memory and shipped to the collector in batches. Ctrl+C
triggers the graceful shutdown, which flushes whatever is still buffered.

Usage:
    LOGSENTINEL_API_KEY=demo-key \\
    LOGSENTINEL_BASE_URL=http://localhost:8080 \\
    LOGSENTINEL_DEBUG=true python3 app.py
"""

import os

from flask import Flask, abort, jsonify, request

from sentinel_sdk import init_sdk, sentinel_middleware


# ---------------------------------------------------------------------------
# Flask app + SDK
# ---------------------------------------------------------------------------

app = Flask(__name__)
sdk = init_sdk()
sentinel_middleware(app, sdk)

PRODUCTS = {
    "WIDGET-A": {"name": "Premium Widget", "price": 29.99},
    "GADGET-B": {"name": "Super Gadget", "price": 49.99},
    "TOOL-C": {"name": "Pro Tool", "price": 19.99},
}


# ---------------------------------------------------------------------------
# Flask routes
# ---------------------------------------------------------------------------

@app.route("/health")
def health():
    """Health check, including the SDK's own queue state."""
    return jsonify({"status": "ok", "sentinel": sdk.health()})


@app.route("/quote", methods=["POST"])
def quote():
    """Price a list of SKUs."""
    data = request.get_json(silent=True)
    if not data or not data.get("items"):
        return jsonify({"error": "items required"}), 400

    lines = []
    for item in data["items"]:
        product = PRODUCTS.get(item.get("sku"))
        if product is None:
            abort(404)
        qty = int(item.get("qty", 1))
        lines.append({"sku": item["sku"], "qty": qty, "total": round(product["price"] * qty, 2)})

    return jsonify({"lines": lines, "total": round(sum(line["total"] for line in lines), 2)})


@app.route("/boom")
def boom():
    """Raise so the captured entry carries an error message."""
    raise RuntimeError("demo failure")


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    print("[APP] Starting Flask demo app")
    print(f"[APP] Sentinel:  {'enabled' if sdk.is_enabled else 'disabled (missing configuration)'}")
    if sdk.is_enabled:
        print(f"[APP] Endpoint:  {sdk.config.endpoint}")
    print()
    app.run(port=int(os.environ.get("PORT", "5000")), debug=False)
