# FastAPI application entry point that initialises
# the app, registers API routes and the background janitor.

import html
import json
import logging

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import HTMLResponse

from qrauth.core.config import settings
from qrauth.core.errors import AuthError
from qrauth.routes.auth import router as auth_router, server_base_url
from qrauth.routes.deps import get_auth_service, get_store
from qrauth.routes.web import router as web_router
from qrauth.services.auth_service import AuthService
from qrauth.services.janitor import SessionJanitor
from qrauth.services.qr_service import QRService

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

janitor = SessionJanitor(get_store())

app = FastAPI(title=settings.APP_NAME)
app.include_router(auth_router)
app.include_router(web_router)


@app.on_event("startup")
async def startup() -> None:  # pragma: no cover - wiring
    janitor.start(settings.GC_INTERVAL_SECONDS)
    logger.info(f"Session janitor started, interval={settings.GC_INTERVAL_SECONDS}s")


@app.on_event("shutdown")
async def shutdown() -> None:  # pragma: no cover - wiring
    await janitor.stop()
    get_store().close()


@app.get("/health")
def health():
    return {"ok": True}



@app.get("/login", response_class=HTMLResponse)
def login_page(request: Request, return_url: str = "/", service: AuthService = Depends(get_auth_service)):
    # Every page load is a fresh login attempt with its own session
    try:
        issued = service.create_session(settings.APP_NAME, return_url, server_base_url(request))
    except AuthError as e:
        raise HTTPException(status_code=e.status_code, detail=str(e))

    qr_png = QRService.create_qr_image(issued.qr_payload)
    # Inline JSON must not be able to close the <script> tag
    flow_js = json.dumps({
        "sessionId": issued.session_id,
        "returnUrl": return_url,
        "ttlMs": int(issued.expires_at - issued.created_at) * 1000,
        "pollMs": settings.POLL_MIN_INTERVAL_MS,
    }).replace("<", "\\u003c")
    app_name = html.escape(settings.APP_NAME)

    page = f"""<!DOCTYPE html>
<html lang="en">
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1">
  <title>Sign in to {app_name}</title>
  <style>
    :root {{ color-scheme: light dark; }}
    main {{ max-width: 22rem; margin: 10vh auto; font: 16px system-ui, sans-serif; text-align: center; }}
    img {{ width: 100%; image-rendering: pixelated; }}
    #state {{ min-height: 1.5em; }}
    #state[data-status="approved"] {{ color: #1a7f37; }}
    #state[data-status="rejected"], #state[data-status="error"] {{ color: #cf222e; }}
    #state[data-status="expired"] {{ color: #9a6700; }}
    #again {{ visibility: hidden; }}
  </style>
</head>
<body>
<main>
  <h1>Sign in to {app_name}</h1>
  <p>Open the mobile app and scan the code.</p>
  <img src="data:image/png;base64,{qr_png}" alt="Login QR code">
  <p id="state" data-status="waiting">Scan the QR code with your mobile app.</p>
  <p><a id="again" href="">Generate a new code</a></p>
</main>
<script>
const flow = {flow_js};
const MESSAGES = {{
  scanned: 'QR code scanned. Approve the login on your phone.',
  approved: 'Login approved. Redirecting...',
  rejected: 'Login rejected on your phone. Try again.',
  expired: 'This code has expired. Generate a new code.',
}};
const RANK = {{ waiting: 0, scanned: 1 }};
const rank = (s) => (s in RANK ? RANK[s] : 2);

let current = 'waiting';
let done = false;
let persisting = false;
let redirected = false;
let source = null;
let pollHandle = null;

function show(status, text) {{
  const el = document.getElementById('state');
  el.dataset.status = status;
  el.textContent = text;
}}

function advance(next) {{
  if (done || !(next in MESSAGES) || rank(next) <= rank(current)) return false;
  current = next;
  show(next, MESSAGES[next]);
  if (rank(next) === 2) {{
    done = true;
    if (source) source.close();
    clearTimeout(pollHandle);
    clearTimeout(deadline);
    if (next !== 'approved') document.getElementById('again').style.visibility = 'visible';
  }}
  return true;
}}

async function persist(data) {{
  const expiresAt = new Date(Date.parse(data.approvedAt) + 7 * 864e5).toISOString();
  // The HTTP-only cookie is what the server trusts, so it goes first
  const resp = await fetch('/api/auth/session', {{
    method: 'POST',
    headers: {{ 'Content-Type': 'application/json' }},
    body: JSON.stringify({{ sessionToken: data.sessionToken, expiresAt }}),
  }});
  if (!resp.ok) throw new Error('cookie sync failed: ' + resp.status);
  localStorage.setItem('tana_session_token', data.sessionToken);
  localStorage.setItem('tana_user_id', data.userId);
  localStorage.setItem('tana_username', data.username);
  localStorage.setItem('tana_token_expiry', expiresAt);
}}

async function handle(data) {{
  if (data.status !== 'approved') {{
    advance(data.status);
    return;
  }}
  if (done || persisting) return;
  persisting = true;
  try {{
    await persist(data);
  }} catch (err) {{
    console.warn(err);
    return;
  }} finally {{
    persisting = false;
  }}
  if (advance('approved') && !redirected) {{
    redirected = true;
    window.location.assign(flow.returnUrl);
  }}
}}

async function poll() {{
  if (done) return;
  const ctl = new AbortController();
  const timer = setTimeout(() => ctl.abort(), 5000);
  try {{
    const resp = await fetch(`/auth/session/${{flow.sessionId}}`, {{ signal: ctl.signal }});
    if (resp.status === 404 || resp.status === 410) {{
      advance('expired');
    }} else if (resp.ok) {{
      await handle(await resp.json());
    }}
  }} catch (err) {{
    show('error', 'Could not reach the login server. Retrying...');
  }} finally {{
    clearTimeout(timer);
    if (!done) pollHandle = setTimeout(poll, flow.pollMs);
  }}
}}

const deadline = setTimeout(() => advance('expired'), flow.ttlMs);

if (window.EventSource) {{
  source = new EventSource(`/auth/session/${{flow.sessionId}}/events`);
  source.onmessage = (ev) => handle(JSON.parse(ev.data));
  source.onerror = () => {{
    // Fall back to polling when the stream drops
    source.close();
    source = null;
    if (!done) poll();
  }};
}} else {{
  poll();
}}
</script>
</body>
</html>
"""
    return HTMLResponse(content=page)
