"""Storefront embed script rendering.

WHAT:
    Builds the JavaScript served at /embed-script: the shop's widget
    configuration inlined as JSON, followed by the static widget client.

WHY:
    Inlining the config saves the storefront a round trip on every page view.
    The content hash lets already-open tabs notice a merchant's save: the
    client polls /widget-config/hash and reloads when it changes.

REFERENCES:
    - storechat/static/widget.js (client half of the contract)
    - storechat/routers/embed.py
"""

import hashlib
import json
import logging
from functools import lru_cache
from importlib import resources
from typing import Any, Dict

from storechat.schemas import WidgetConfigDocument

logger = logging.getLogger(__name__)

HASH_LENGTH = 32
CONFIG_GLOBAL = "window.__STORECHAT_CONFIG__"


def config_hash(document: WidgetConfigDocument) -> str:
    """Stable content hash of everything the widget renders, plus the revision."""
    payload = document.model_dump(mode="json", by_alias=True, exclude={"shop"})
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:HASH_LENGTH]


def safe_inline_json(value: Any) -> str:
    """JSON that can sit inside a <script> element without terminating it."""
    text = json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    return (
        text.replace("<", "\\u003c")
        .replace(">", "\\u003e")
        .replace("&", "\\u0026")
        .replace("\u2028", "\\u2028")
        .replace("\u2029", "\\u2029")
    )


@lru_cache()
def load_widget_client() -> str:
    return resources.files("storechat").joinpath("static/widget.js").read_text(encoding="utf-8")


def build_client_config(
    document: WidgetConfigDocument,
    shop: str,
    app_url: str,
    poll_interval_ms: int = 5000,
) -> Dict[str, Any]:
    config = document.model_dump(mode="json", by_alias=True)
    config.update({
        "shop": shop,
        "settingsHash": config_hash(document),
        "apiBase": app_url.rstrip("/"),
        "pollIntervalMs": poll_interval_ms,
    })
    return config


def render_embed_script(
    document: WidgetConfigDocument,
    shop: str,
    app_url: str,
    poll_interval_ms: int = 5000,
) -> str:
    config = build_client_config(document, shop, app_url, poll_interval_ms)
    logger.debug("[EMBED] Rendering script for %s (hash=%s)", shop, config["settingsHash"])
    return f"{CONFIG_GLOBAL} = {safe_inline_json(config)};\n{load_widget_client()}"
