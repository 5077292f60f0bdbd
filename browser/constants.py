# constants.py
import os

HEADLESS = os.environ.get("DEMO_BROWSER_HEADFUL", "0").strip() != "1"
VIEWPORT = {"width": 1280, "height": 720}
BROWSER_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-web-security",
    "--disable-features=VizDisplayCompositor",
]

NAVIGATION_TIMEOUT = int(os.environ.get("DEMO_NAVIGATION_TIMEOUT", "30000"))
ACTION_TIMEOUT = 10000
CLICK_SETTLE_MS = 1000

DEFAULT_SCROLL_AMOUNT = 300
SCROLL_DIRECTIONS = ("up", "down")

# Content extraction limits
MAX_LINK_TEXT = 100
EXCERPT_NODES = 10
MAX_EXCERPT_SIZE = 500

HIGHLIGHT_STYLE = "3px solid #ff5722"

# Closed session ids remembered for idempotent close
CLOSED_ID_HISTORY = int(os.environ.get("DEMO_CLOSED_ID_HISTORY", "1000"))
