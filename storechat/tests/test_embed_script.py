"""Embed script tests

WHAT: Content hash stability, script-safe JSON, GET /embed-script, and the
      widget client run against a stubbed page in V8
WHY: Open storefront tabs reload when the hash changes; an unstable hash
     reloads every tab on every poll
REFERENCES:
    - storechat/services/embed_service.py
    - storechat/routers/embed.py
"""

import json

from py_mini_racer import MiniRacer

from storechat.schemas import WidgetConfigDocument, WidgetConfigUpdate
from storechat.services.embed_service import (
    CONFIG_GLOBAL,
    build_client_config,
    config_hash,
    load_widget_client,
    render_embed_script,
    safe_inline_json,
)
from storechat.services.widget_config_service import save_config
from storechat.tests.conftest import SHOP


def test_hash_ignores_shop_but_not_content():
    base = WidgetConfigDocument(title="Chat", revision=2)

    assert config_hash(base) == config_hash(base.model_copy(update={"shop": SHOP}))
    assert config_hash(base) != config_hash(base.model_copy(update={"title": "Help"}))
    assert config_hash(base) != config_hash(base.model_copy(update={"revision": 3}))


def test_safe_inline_json_cannot_close_the_script_tag():
    text = safe_inline_json({"greeting": "</script><script>alert(1)</script> & \u2028"})

    assert "</script>" not in text
    assert "<" not in text and ">" not in text and "&" not in text
    assert "\u2028" not in text
    assert "\\u2028" in text
    assert json.loads(text)["greeting"].startswith("</script>")


def test_client_config_carries_hash_and_api_base():
    document = WidgetConfigDocument(is_active=True)

    config = build_client_config(document, SHOP, "https://app.storechat.test/", poll_interval_ms=2500)

    assert config["shop"] == SHOP
    assert config["settingsHash"] == config_hash(document)
    assert config["apiBase"] == "https://app.storechat.test"
    assert config["pollIntervalMs"] == 2500
    assert config["isActive"] is True


def test_widget_client_is_packaged():
    source = load_widget_client()

    assert "window.__STORECHAT_CONFIG__" in source
    assert "/widget-config/hash" in source


def test_embed_script_route(client, test_db_session):
    result = save_config(test_db_session, SHOP, WidgetConfigUpdate(title="Ask Acme"))

    response = client.get("/embed-script", params={"shop": SHOP})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/javascript")
    assert "no-store" in response.headers["cache-control"]
    assert response.headers["pragma"] == "no-cache"
    assert response.headers["etag"] == f'"{config_hash(result.config)}"'
    assert response.headers["access-control-allow-origin"] == "*"

    first_line, _, rest = response.text.partition("\n")
    assert first_line.startswith(f"{CONFIG_GLOBAL} = ")
    inlined = json.loads(first_line[len(f"{CONFIG_GLOBAL} = "):].rstrip(";"))
    assert inlined["title"] == "Ask Acme"
    assert inlined["settingsHash"] == config_hash(result.config)
    assert inlined["apiBase"] == "https://app.storechat.test"
    assert rest == load_widget_client()


def test_embed_script_for_unconfigured_shop_is_inactive(client):
    response = client.get("/embed-script", params={"shop": SHOP})

    first_line = response.text.partition("\n")[0]
    inlined = json.loads(first_line[len(f"{CONFIG_GLOBAL} = "):].rstrip(";"))
    assert inlined["isActive"] is False


def test_storefront_preflight(client):
    response = client.options(
        "/embed-script",
        headers={"Origin": "https://acme.myshopify.com", "Access-Control-Request-Method": "GET"},
    )

    assert response.status_code == 200
    assert response.headers["access-control-allow-origin"] == "*"


# ============================================================================
# Widget client in a JS engine
# ============================================================================

# Minimal browser surface for widget.js: element tree, storage, timers and a
# fetch whose promise chain settles synchronously.
PAGE_STUBS = r"""
var window = globalThis;
var harness = { intervals: [], reloads: 0, nextHash: null, storage: {} };

function makeElement(tag) {
  return {
    tagName: tag.toUpperCase(),
    id: '',
    style: {},
    children: [],
    attributes: {},
    parentNode: null,
    setAttribute: function (name, value) { this.attributes[name] = String(value); },
    appendChild: function (child) { child.parentNode = this; this.children.push(child); return child; },
    addEventListener: function () {},
    remove: function () {
      if (!this.parentNode) { return; }
      var siblings = this.parentNode.children;
      siblings.splice(siblings.indexOf(this), 1);
      this.parentNode = null;
    }
  };
}

function findAll(node, id, found) {
  for (var i = 0; i < node.children.length; i++) {
    if (node.children[i].id === id) { found.push(node.children[i]); }
    findAll(node.children[i], id, found);
  }
  return found;
}

var document = {
  head: makeElement('head'),
  body: makeElement('body'),
  createElement: makeElement,
  getElementById: function (id) {
    return findAll(this.head, id, [])[0] || findAll(this.body, id, [])[0] || null;
  }
};

function settled(value) {
  return {
    then: function (onValue) {
      var next = onValue(value);
      return next && typeof next.then === 'function' ? next : settled(next);
    },
    catch: function () { return this; }
  };
}

window.innerWidth = 1280;
window.location = { reload: function () { harness.reloads += 1; } };
window.localStorage = {
  getItem: function (key) {
    return Object.prototype.hasOwnProperty.call(harness.storage, key) ? harness.storage[key] : null;
  },
  setItem: function (key, value) { harness.storage[key] = String(value); }
};
window.setInterval = function (fn, ms) { harness.intervals.push(fn); return harness.intervals.length; };
window.setTimeout = function (fn) { fn(); return 0; };
window.fetch = function () {
  return settled({ ok: true, json: function () { return settled({ hash: harness.nextHash }); } });
};
true;
"""


class StorefrontTab:
    """One open storefront tab; script loads share its DOM and storage."""

    def __init__(self):
        self.ctx = MiniRacer()
        self.ctx.eval(PAGE_STUBS)

    def load(self, script: str) -> None:
        self.ctx.eval(script)

    def count(self, element_id: str) -> int:
        return self.ctx.eval("findAll(document.body, " + json.dumps(element_id) + ", []).length")

    def launcher_label(self) -> str:
        return self.ctx.eval("document.getElementById('storechat-widget').attributes['aria-label']")

    def stored_hash(self) -> str:
        return self.ctx.eval("harness.storage[" + json.dumps(f"storechatSettingsHash:{SHOP}") + "]")

    def poll(self, server_hash: str) -> None:
        self.ctx.eval(
            "harness.nextHash = " + json.dumps(server_hash) + ";"
            "harness.intervals.forEach(function (tick) { tick(); });"
        )

    @property
    def intervals(self) -> int:
        return self.ctx.eval("harness.intervals.length")

    @property
    def reloads(self) -> int:
        return self.ctx.eval("harness.reloads")


def _script(**fields):
    document = WidgetConfigDocument(**fields)
    return render_embed_script(document, SHOP, "https://app.storechat.test"), config_hash(document)


def test_loading_the_script_twice_renders_one_widget():
    script, _ = _script(is_active=True, title="Chat", revision=1)
    tab = StorefrontTab()

    tab.load(script)
    tab.load(script)

    assert tab.count("storechat-widget") == 1
    assert tab.count("storechat-panel") == 1
    assert tab.intervals == 1


def test_changed_settings_rebuild_the_widget():
    first, _ = _script(is_active=True, title="Chat", revision=1)
    second, second_hash = _script(is_active=True, title="Ask Acme", revision=2)
    tab = StorefrontTab()

    tab.load(first)
    tab.load(second)

    assert tab.count("storechat-widget") == 1
    assert tab.launcher_label() == "Ask Acme"
    assert tab.stored_hash() == second_hash

    tab.poll(second_hash)
    assert tab.reloads == 0


def test_inactive_widget_still_polls_for_changes():
    script, current_hash = _script(is_active=False, revision=0)
    tab = StorefrontTab()

    tab.load(script)
    tab.load(script)

    assert tab.count("storechat-widget") == 0
    assert tab.intervals == 1

    tab.poll(current_hash)
    assert tab.reloads == 0

    tab.poll("f" * 32)
    assert tab.reloads == 1
    assert tab.stored_hash() == "f" * 32
