"""Flask API issuing the per-session integration link for TrackPedal."""
import logging
from functools import lru_cache
from typing import Dict, Optional

import requests
from flask import Flask, jsonify, request

from trackpedal import config

logger = logging.getLogger(__name__)

app = Flask(__name__)

PLANS = {
    "basic": {"label": "Basic", "key": config.BASIC_PLAN_KEY},
    "pro": {"label": "Pro", "key": config.PRO_PLAN_KEY},
}
APP_ICON = "https://paydantic.io/Paydantic_Basic_Logo.svg"
APP_COLOR = "#ffde59"


class IntegrationCache:
    """Session id → integration URL for the lifetime of the process.

    Only successful lookups are stored; entries never expire.
    """

    def __init__(self):
        self._urls: Dict[str, str] = {}

    def get(self, session: str) -> Optional[str]:
        return self._urls.get(session)

    def put(self, session: str, url: str):
        self._urls[session] = url

    def __contains__(self, session):
        return session in self._urls

    def __len__(self):
        return len(self._urls)

    def clear(self):
        self._urls.clear()


sessions = IntegrationCache()


@lru_cache()
def get_http_session():
    return requests.Session()


def create_integration(tier: str, session: str) -> Optional[str]:
    plan = PLANS[tier]
    body = {
        "appName": "TrackPedal",
        "appDescription": f"TrackPedal {plan['label']} Plan",
        "appIcon": APP_ICON,
        "appColor": APP_COLOR,
        "metadata": {"session": session},
    }
    try:
        resp = get_http_session().post(
            config.ENSYNC_INTEGRATION_URL,
            json=body,
            headers={"Authorization": f"Bearer {plan['key']}"},
            timeout=10,
        )
        resp.raise_for_status()
        integration_id = resp.json()["data"]["id"]
    except (requests.RequestException, ValueError, KeyError, TypeError) as exc:
        logger.error("Failed to create %s integration for session %s: %s", tier, session, exc)
        return None
    return f"{config.ENSYNC_EMBED_URL}/{integration_id}"


@app.route("/api/ensync/connect/<tier>")
def api_connect(tier):
    if tier not in PLANS:
        return jsonify({"error": f"unknown plan {tier!r}"}), 404
    session = request.args.get("session") or f"dummy-{tier}"
    if session not in sessions:
        url = create_integration(tier, session)
        if url is not None:
            sessions.put(session, url)
    return jsonify({"url": sessions.get(session)})


def main():
    config.configure_logging()
    app.run(host="0.0.0.0", port=config.PORT)


if __name__ == "__main__":
    main()
