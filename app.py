import json
import logging
import re
import time
from functools import partial

from flask import (
    Blueprint, Flask, Response, current_app, jsonify, request, session,
    stream_with_context,
)

from builder import AppBuilder, build_prompt, fixed_backoff
from config import AVAILABLE_MODELS, DEFAULT_SECRET_KEY, IMAGE_MODELS, Config
from gemini_client import GeminiClient
from models import ChatMessage, GeneratedImage
from services import (
    AdminService, AuthService, CreditLedger, GuestUsage, ProjectService,
    ServiceError, verify_google_token,
)
from storage import open_store
from system_prompt import INITIAL_CODE, WELCOME_MESSAGE

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

bp = Blueprint("builder", __name__)


class Unauthorized(ServiceError):
    status_code = 401

    def __init__(self, message="Sign in first"):
        super().__init__(message)


class Forbidden(ServiceError):
    status_code = 403

    def __init__(self, message="Admins only"):
        super().__init__(message)


class Services:
    """Everything a request needs, created once per app."""

    def __init__(self, config, store, gemini, sleep=time.sleep):
        self.config = config
        self.store = store
        self.gemini = gemini
        self.sleep = sleep
        self.ledger = CreditLedger(store, config["DAILY_FREE_CREDITS"])
        self.guests = GuestUsage(store, config["GUEST_LIMIT"])
        self.auth = AuthService(store, self.ledger, config.get("ADMIN_EMAIL"))
        self.projects = ProjectService(store)
        self.admin = AdminService(store)

    def make_builder(self, model):
        return AppBuilder(
            partial(self.gemini.stream_generation, model=model),
            self.gemini.generate_image,
            max_retries=self.config["GENERATION_RETRIES"],
            backoff=fixed_backoff(self.config["REPAIR_DELAY_SECONDS"]),
            sleep=self.sleep,
        )


def create_app(overrides=None, store=None, gemini=None, sleep=time.sleep):
    app = Flask(__name__)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)
    if app.config["SECRET_KEY"] == DEFAULT_SECRET_KEY and not app.config.get("TESTING"):
        logger.warning("SECRET_KEY is not set; sessions are signed with the public default key")

    if store is None:
        store = open_store(app.config)
    if gemini is None:
        gemini = GeminiClient(
            api_key=app.config["GEMINI_API_KEY"],
            text_model=app.config["TEXT_MODEL"],
            image_model=app.config["IMAGE_MODEL"],
            timeout_ms=app.config["GEMINI_TIMEOUT_MS"],
            max_image_side=app.config["MAX_IMAGE_SIDE"],
        )
    app.extensions["app_builder"] = Services(app.config, store, gemini, sleep=sleep)
    app.register_blueprint(bp)
    return app


def _services():
    return current_app.extensions["app_builder"]


def _current_user():
    return _services().auth.get_current_user(session.get("user_id"))


def _require_user():
    user = _current_user()
    if user is None:
        raise Unauthorized()
    return user


def _require_admin():
    user = _require_user()
    if not _services().auth.is_admin(user):
        raise Forbidden()
    return user


def _session_payload(user):
    svc = _services()
    return {
        "user": user.public_doc() if user else None,
        "isAdmin": svc.auth.is_admin(user),
        "guestRemaining": svc.guests.remaining(user.id) if user and user.is_anonymous else None,
        "googleClientId": current_app.config.get("GOOGLE_CLIENT_ID"),
    }


def _clear_session():
    # guest_id survives sign-out and re-sign-in
    guest_id = session.get("guest_id")
    session.clear()
    if guest_id:
        session["guest_id"] = guest_id


def _start_session(user):
    _clear_session()
    session["user_id"] = user.id
    if user.is_anonymous:
        session["guest_id"] = user.id
    return jsonify(_session_payload(user))


def _js_literal(value):
    # safe inside an inline <script> block
    return json.dumps(value).replace("</", "<\\/")


def _slugify(name):
    slug = re.sub(r"[^A-Za-z0-9]+", "-", name).strip("-").lower()
    return slug or "app"


@bp.app_errorhandler(ServiceError)
def handle_service_error(e):
    return jsonify({"error": str(e)}), e.status_code


@bp.route("/")
def index():
    return HTML_PAGE.replace(
        "/*__INITIAL_CODE__*/", _js_literal(INITIAL_CODE),
    ).replace(
        "/*__WELCOME__*/", _js_literal(WELCOME_MESSAGE),
    )


@bp.route("/p/<project_id>")
def public_page(project_id):
    return PUBLIC_PAGE.replace("/*__PROJECT_ID__*/", _js_literal(project_id))


@bp.route("/api/models")
def models():
    return jsonify({
        "models": AVAILABLE_MODELS,
        "imageModels": IMAGE_MODELS,
        "default": current_app.config["TEXT_MODEL"],
    })


# ── Auth ──

@bp.route("/api/session")
def get_session():
    return jsonify(_session_payload(_current_user()))


@bp.route("/api/auth/signup", methods=["POST"])
def sign_up():
    data = request.get_json(silent=True) or {}
    user = _services().auth.sign_up(
        data.get("name", "").strip(), data.get("email", ""), data.get("password", ""),
    )
    return _start_session(user)


@bp.route("/api/auth/signin", methods=["POST"])
def sign_in():
    data = request.get_json(silent=True) or {}
    user = _services().auth.sign_in(data.get("email", ""), data.get("password", ""))
    return _start_session(user)


@bp.route("/api/auth/google", methods=["POST"])
def sign_in_google():
    client_id = current_app.config.get("GOOGLE_CLIENT_ID")
    if not client_id:
        return jsonify({"error": "Google sign-in is not configured"}), 400
    data = request.get_json(silent=True) or {}
    credential = data.get("credential", "")
    if not credential:
        return jsonify({"error": "Missing credential"}), 400
    profile = verify_google_token(credential, client_id)
    user = _services().auth.sign_in_with_provider("google", profile)
    return _start_session(user)


@bp.route("/api/auth/guest", methods=["POST"])
def sign_in_guest():
    user = _services().auth.sign_in_anonymously(session.get("guest_id"))
    return _start_session(user)


@bp.route("/api/auth/signout", methods=["POST"])
def sign_out():
    _clear_session()
    return jsonify({"ok": True})


# ── Projects ──

@bp.route("/api/projects", methods=["GET"])
def list_projects():
    user = _require_user()
    projects = _services().projects.list_for_user(user.id)
    return jsonify({"projects": [p.to_doc() for p in projects]})


@bp.route("/api/projects", methods=["POST"])
def create_project():
    user = _require_user()
    data = request.get_json(silent=True) or {}
    project = _services().projects.create(
        user.id, data.get("name", "").strip(), data.get("description", "").strip(),
    )
    return jsonify(project.to_doc()), 201


@bp.route("/api/projects/<project_id>", methods=["GET"])
def get_project(project_id):
    user = _require_user()
    return jsonify(_services().projects.get_owned(project_id, user.id).to_doc())


@bp.route("/api/projects/<project_id>", methods=["PATCH"])
def update_project(project_id):
    user = _require_user()
    svc = _services()
    project = svc.projects.get_owned(project_id, user.id)
    data = request.get_json(silent=True) or {}
    for key in ("name", "description", "code"):
        if key in data:
            if not isinstance(data[key], str):
                return jsonify({"error": f"{key} must be a string"}), 400
            setattr(project, key, data[key])
    return jsonify(svc.projects.update(project).to_doc())


@bp.route("/api/projects/<project_id>", methods=["DELETE"])
def delete_project(project_id):
    user = _require_user()
    _services().projects.delete(project_id, user.id)
    return jsonify({"ok": True})


@bp.route("/api/projects/<project_id>/publish", methods=["POST"])
def publish_project(project_id):
    user = _require_user()
    project = _services().projects.publish(project_id, user.id)
    return jsonify({"url": f"{request.host_url.rstrip('/')}/p/{project.id}"})


@bp.route("/api/projects/<project_id>/export")
def export_project(project_id):
    user = _require_user()
    project = _services().projects.get_owned(project_id, user.id)
    filename = f"{_slugify(project.name)}.html"
    return Response(
        project.code or INITIAL_CODE,
        mimetype="text/html",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@bp.route("/api/public/<project_id>")
def public_project(project_id):
    project = _services().projects.get_public(project_id)
    if project is None:
        return jsonify({"error": "Project not found"}), 404
    return jsonify({"name": project.name, "description": project.description, "code": project.code})


# ── Generation ──

@bp.route("/api/projects/<project_id>/generate", methods=["POST"])
def generate(project_id):
    user = _require_user()
    svc = _services()
    data = request.get_json(silent=True) or {}
    prompt = (data.get("prompt") or "").strip()
    model = data.get("model") or current_app.config["TEXT_MODEL"]

    if not prompt:
        return jsonify({"error": "Prompt cannot be empty"}), 400

    if model not in AVAILABLE_MODELS:
        return jsonify({"error": f"Unknown model: {model}"}), 400

    project = svc.projects.get_owned(project_id, user.id)

    # Charged once per user action, before any remote call and any retry.
    if user.is_anonymous:
        svc.guests.consume(user.id)
    else:
        svc.ledger.deduct(user.id)

    history = tuple(project.messages)
    project.messages.append(ChatMessage.user(prompt))
    svc.projects.update(project)

    builder = svc.make_builder(model)
    full_prompt = build_prompt(prompt, project.code)

    def events():
        start = time.time()
        for event in builder.build(full_prompt, history):
            if event["type"] == "done":
                app_doc = event["app"]
                project.code = app_doc["code"]
                if project.name == "Untitled Project":
                    project.name = app_doc["appName"]
                    project.description = app_doc["description"]
                project.images.extend(GeneratedImage.model_validate(i) for i in event["images"])
                project.messages.append(ChatMessage.model_validate(event["message"]))
                svc.projects.update(project)
                event = dict(event, elapsed=round(time.time() - start, 1), project=project.to_doc())
            elif event["type"] == "error":
                project.messages.append(ChatMessage.model_validate(event["message"]))
                svc.projects.update(project)
            elif event["type"] == "chunk":
                event = {"type": "chunk", "text": event["text"]}
            yield json.dumps(event) + "\n"

    return Response(stream_with_context(events()), mimetype="application/x-ndjson")


# ── Credits ──

@bp.route("/api/credits/packs")
def credit_packs():
    packs = current_app.config["CREDIT_PACKS"]
    return jsonify({
        "packs": [
            {"id": name, "credits": credits, "cost": cost}
            for name, (credits, cost) in packs.items()
        ]
    })


@bp.route("/api/credits/purchase", methods=["POST"])
def purchase_credits():
    user = _require_user()
    if user.is_anonymous:
        return jsonify({"error": "Create an account to buy credits"}), 403
    data = request.get_json(silent=True) or {}
    pack = current_app.config["CREDIT_PACKS"].get(data.get("pack"))
    if pack is None:
        return jsonify({"error": f"Unknown pack: {data.get('pack')}"}), 400
    credits, cost = pack
    updated = _services().ledger.purchase(user.id, credits, cost)
    return jsonify({"user": updated.public_doc()})


# ── Admin ──

@bp.route("/api/admin/users")
def admin_users():
    _require_admin()
    users = _services().admin.list_users()
    return jsonify({"users": [u.public_doc() for u in users]})


@bp.route("/api/admin/users/<user_id>/ban", methods=["POST"])
def admin_toggle_ban(user_id):
    _require_admin()
    banned = _services().admin.toggle_ban(user_id)
    return jsonify({"id": user_id, "isBanned": banned})


@bp.route("/api/admin/transactions")
def admin_transactions():
    _require_admin()
    txs = _services().admin.list_transactions()
    return jsonify({"transactions": [t.to_doc() for t in txs]})


HTML_PAGE = r"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<title>App Builder</title>
<style>
  *, *::before, *::after { box-sizing: border-box; margin: 0; padding: 0; }

  body {
    font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif;
    background: #0f0f0f;
    color: #e0e0e0;
    height: 100vh;
    overflow: hidden;
  }

  .view { display: none; height: 100vh; }
  .view.active { display: flex; }

  .topbar {
    height: 52px;
    border-bottom: 1px solid #1e1e1e;
    display: flex;
    align-items: center;
    gap: 12px;
    padding: 0 20px;
    flex-shrink: 0;
  }
  .brand { font-weight: 700; color: #fff; }
  .brand span { color: #f97316; }
  .spacer { flex: 1; }
  .credits { font-size: 0.75rem; color: #aaa; }

  button {
    background: #f97316;
    color: #fff;
    border: none;
    border-radius: 8px;
    padding: 8px 16px;
    font-size: 0.82rem;
    font-weight: 500;
    cursor: pointer;
    transition: background 0.2s;
  }
  button:hover { background: #ea580c; }
  button:disabled { background: #2a2a2a; color: #666; cursor: not-allowed; }
  button.ghost { background: transparent; color: #aaa; border: 1px solid #2a2a2a; }
  button.ghost:hover { color: #fff; border-color: #f97316; }
  button.ghost.active { color: #fff; border-color: #f97316; background: #1f1208; }

  input, select, textarea {
    background: #1a1a1a;
    color: #e0e0e0;
    border: 1px solid #2a2a2a;
    border-radius: 8px;
    padding: 10px 12px;
    font-size: 0.85rem;
    font-family: inherit;
    outline: none;
    transition: border-color 0.2s;
  }
  input:focus, select:focus, textarea:focus { border-color: #f97316; }

  .centered {
    flex-direction: column;
    align-items: center;
    justify-content: center;
    gap: 16px;
    text-align: center;
  }
  .centered h1 { font-size: 2.4rem; color: #fff; }
  .centered p { color: #999; max-width: 460px; line-height: 1.5; }
  .row { display: flex; gap: 10px; align-items: center; }

  .form { display: flex; flex-direction: column; gap: 10px; width: 320px; }
  .form a { color: #f97316; font-size: 0.8rem; cursor: pointer; }
  .error-text { color: #f87171; font-size: 0.8rem; min-height: 1em; }

  .column { flex-direction: column; width: 100%; }
  .page-body { flex: 1; overflow-y: auto; padding: 24px; }

  .grid {
    display: grid;
    grid-template-columns: repeat(auto-fill, minmax(240px, 1fr));
    gap: 16px;
  }
  .card {
    background: #151515;
    border: 1px solid #1e1e1e;
    border-radius: 12px;
    padding: 16px;
    display: flex;
    flex-direction: column;
    gap: 8px;
  }
  .card h3 { font-size: 0.95rem; color: #fff; }
  .card p { font-size: 0.78rem; color: #888; }
  .card .row button { padding: 6px 10px; font-size: 0.75rem; }

  /* ── Editor ── */
  .editor { flex: 1; display: flex; overflow: hidden; }
  .chat-panel {
    width: 400px;
    display: flex;
    flex-direction: column;
    border-right: 1px solid #1e1e1e;
    flex-shrink: 0;
  }
  .chat-log {
    flex: 1;
    overflow-y: auto;
    padding: 16px;
    display: flex;
    flex-direction: column;
    gap: 12px;
  }
  .msg {
    max-width: 90%;
    padding: 10px 14px;
    border-radius: 14px;
    font-size: 0.85rem;
    line-height: 1.5;
    white-space: pre-wrap;
  }
  .msg.user { align-self: flex-end; background: #f97316; color: #fff; }
  .msg.assistant { align-self: flex-start; background: #1a1a1a; border: 1px solid #262626; }
  .msg.streaming {
    align-self: stretch;
    max-width: 100%;
    font-family: 'SF Mono', Menlo, monospace;
    font-size: 0.65rem;
    color: #fdba74;
    border: 1px solid #7c2d12;
    background: #0c0c0e;
    max-height: 160px;
    overflow-y: auto;
    word-break: break-all;
  }
  .msg .state { display: block; color: #f97316; font-size: 0.65rem; margin-bottom: 6px; text-transform: uppercase; }

  .chat-input { padding: 12px; border-top: 1px solid #1e1e1e; display: flex; flex-direction: column; gap: 8px; }
  .chat-input textarea { resize: none; height: 72px; }

  .preview-panel { flex: 1; display: flex; flex-direction: column; min-width: 0; }
  .preview-bar {
    height: 44px;
    border-bottom: 1px solid #1e1e1e;
    display: flex;
    align-items: center;
    gap: 8px;
    padding: 0 16px;
  }
  .preview-bar button { padding: 5px 10px; font-size: 0.72rem; }
  .canvas { flex: 1; background: #18181b; display: flex; justify-content: center; overflow: hidden; }
  .canvas iframe { border: none; background: #fff; width: 100%; height: 100%; }
  .canvas.mobile iframe { max-width: 375px; border-radius: 24px; margin: 16px 0; height: calc(100% - 32px); }
  .canvas pre {
    width: 100%;
    overflow: auto;
    padding: 16px;
    font-family: 'SF Mono', Menlo, monospace;
    font-size: 0.72rem;
    color: #93c5fd;
    white-space: pre-wrap;
    background: #0c0c0e;
  }

  table { width: 100%; border-collapse: collapse; font-size: 0.8rem; }
  th, td { text-align: left; padding: 8px; border-bottom: 1px solid #1e1e1e; }
  th { color: #888; font-weight: 500; }
</style>
</head>
<body>

<!-- ── Landing ── -->
<div id="view-landing" class="view centered">
  <h1>Describe it. <span style="color:#f97316">Ship it.</span></h1>
  <p>Tell the builder what web app you want and watch it write working HTML, CSS and JavaScript live.</p>
  <div class="row">
    <button onclick="setView('signup')">Get started</button>
    <button class="ghost" onclick="setView('login')">Sign in</button>
    <button class="ghost" onclick="signInGuest()">Try as guest</button>
  </div>
</div>

<!-- ── Login ── -->
<div id="view-login" class="view centered">
  <h1>Sign in</h1>
  <div class="form">
    <input id="loginEmail" type="email" placeholder="Email">
    <input id="loginPassword" type="password" placeholder="Password">
    <button onclick="signIn()">Sign in</button>
    <div id="googleButton"></div>
    <div id="loginError" class="error-text"></div>
    <a onclick="setView('signup')">No account? Sign up</a>
  </div>
</div>

<!-- ── Signup ── -->
<div id="view-signup" class="view centered">
  <h1>Create account</h1>
  <div class="form">
    <input id="signupName" placeholder="Name">
    <input id="signupEmail" type="email" placeholder="Email">
    <input id="signupPassword" type="password" placeholder="Password">
    <button onclick="signUp()">Sign up</button>
    <div id="signupError" class="error-text"></div>
    <a onclick="setView('login')">Already have an account? Sign in</a>
  </div>
</div>

<!-- ── Dashboard ── -->
<div id="view-dashboard" class="view column">
  <div class="topbar">
    <div class="brand">App <span>Builder</span></div>
    <div class="spacer"></div>
    <span class="credits" data-credits></span>
    <button class="ghost" onclick="setView('pricing')">Buy credits</button>
    <button class="ghost" id="adminLink" style="display:none" onclick="setView('admin')">Admin</button>
    <button class="ghost" onclick="signOut()">Sign out</button>
  </div>
  <div class="page-body">
    <div class="row" style="margin-bottom:20px">
      <button onclick="newProject()">+ New project</button>
    </div>
    <div id="projectGrid" class="grid"></div>
  </div>
</div>

<!-- ── Editor ── -->
<div id="view-editor" class="view column">
  <div class="topbar">
    <button class="ghost" onclick="openDashboard()">&#8592; Dashboard</button>
    <div class="brand" id="projectName">Untitled Project</div>
    <div class="spacer"></div>
    <span class="credits" data-credits></span>
    <button class="ghost" onclick="publishProject()">Share</button>
    <button onclick="exportProject()">Export</button>
  </div>
  <div class="editor">
    <div class="chat-panel">
      <div id="chatLog" class="chat-log"></div>
      <div class="chat-input">
        <select id="modelSelect"></select>
        <textarea id="promptInput" placeholder="Build a..."></textarea>
        <button id="sendBtn" onclick="handleGenerate()">Send</button>
      </div>
    </div>
    <div class="preview-panel">
      <div class="preview-bar">
        <button class="ghost active" id="modePreview" onclick="setViewMode('preview')">Preview</button>
        <button class="ghost" id="modeCode" onclick="setViewMode('code')">Code</button>
        <div class="spacer"></div>
        <button class="ghost active" id="deviceDesktop" onclick="setDevice('desktop')">Desktop</button>
        <button class="ghost" id="deviceMobile" onclick="setDevice('mobile')">Mobile</button>
      </div>
      <div id="canvas" class="canvas">
        <iframe id="previewFrame" title="Preview" sandbox="allow-scripts allow-modals allow-forms allow-popups"></iframe>
        <pre id="codeView" style="display:none"></pre>
      </div>
    </div>
  </div>
</div>

<!-- ── Pricing ── -->
<div id="view-pricing" class="view column">
  <div class="topbar">
    <button class="ghost" onclick="openDashboard()">&#8592; Dashboard</button>
    <div class="spacer"></div>
    <span class="credits" data-credits></span>
  </div>
  <div class="page-body">
    <div id="packGrid" class="grid"></div>
    <div id="pricingError" class="error-text" style="margin-top:12px"></div>
  </div>
</div>

<!-- ── Admin ── -->
<div id="view-admin" class="view column">
  <div class="topbar">
    <button class="ghost" onclick="openDashboard()">&#8592; Dashboard</button>
    <div class="brand">Admin</div>
  </div>
  <div class="page-body">
    <table>
      <thead><tr><th>Name</th><th>Email</th><th>Free</th><th>Purchased</th><th>Status</th><th></th></tr></thead>
      <tbody id="userRows"></tbody>
    </table>
  </div>
</div>

<script>
  const INITIAL_CODE = /*__INITIAL_CODE__*/;
  const WELCOME = /*__WELCOME__*/;
  const VIEWS = ['landing', 'login', 'signup', 'dashboard', 'editor', 'admin', 'pricing'];

  // Single source of truth for the page.
  const state = {
    view: 'landing',
    user: null,
    isAdmin: false,
    guestRemaining: null,
    project: null,
    generating: false,
    viewMode: 'preview',
    device: 'desktop',
  };

  const el = id => document.getElementById(id);

  function setView(view) {
    if (!VIEWS.includes(view)) return;
    state.view = view;
    VIEWS.forEach(v => el('view-' + v).classList.toggle('active', v === view));
    if (view === 'pricing') loadPacks();
    if (view === 'admin') loadUsers();
  }

  async function api(path, options = {}) {
    const res = await fetch(path, {
      method: options.method || 'GET',
      headers: { 'Content-Type': 'application/json' },
      body: options.body ? JSON.stringify(options.body) : undefined,
    });
    const data = await res.json();
    if (!res.ok || data.error) throw new Error(data.error || 'HTTP ' + res.status);
    return data;
  }

  function applySession(data) {
    state.user = data.user;
    state.isAdmin = data.isAdmin;
    state.guestRemaining = data.guestRemaining;
    renderCredits();
    el('adminLink').style.display = state.isAdmin ? '' : 'none';
  }

  function renderCredits() {
    let text = '';
    if (state.user && state.user.isAnonymous) {
      text = 'Guest: ' + state.guestRemaining + ' builds left';
    } else if (state.user) {
      text = (state.user.freeCredits + state.user.purchasedCredits) + ' credits';
    }
    document.querySelectorAll('[data-credits]').forEach(n => n.textContent = text);
  }

  async function refreshSession() {
    applySession(await api('/api/session'));
  }

  // ── Auth ──
  async function signIn() {
    try {
      applySession(await api('/api/auth/signin', { method: 'POST', body: {
        email: el('loginEmail').value, password: el('loginPassword').value } }));
      openDashboard();
    } catch (e) { el('loginError').textContent = e.message; }
  }

  async function signUp() {
    try {
      applySession(await api('/api/auth/signup', { method: 'POST', body: {
        name: el('signupName').value, email: el('signupEmail').value,
        password: el('signupPassword').value } }));
      openDashboard();
    } catch (e) { el('signupError').textContent = e.message; }
  }

  async function signInGuest() {
    applySession(await api('/api/auth/guest', { method: 'POST' }));
    await newProject();
  }

  async function signInGoogle(response) {
    try {
      applySession(await api('/api/auth/google', { method: 'POST', body: { credential: response.credential } }));
      openDashboard();
    } catch (e) { el('loginError').textContent = e.message; }
  }

  async function signOut() {
    await api('/api/auth/signout', { method: 'POST' });
    state.user = null;
    state.project = null;
    setView('landing');
  }

  // ── Projects ──
  async function openDashboard() {
    setView('dashboard');
    const data = await api('/api/projects');
    const grid = el('projectGrid');
    grid.innerHTML = '';
    data.projects.forEach(p => {
      const card = document.createElement('div');
      card.className = 'card';
      const title = document.createElement('h3');
      title.textContent = p.name;
      const desc = document.createElement('p');
      desc.textContent = p.description || new Date(p.updatedAt).toLocaleString();
      const actions = document.createElement('div');
      actions.className = 'row';
      const openBtn = document.createElement('button');
      openBtn.textContent = 'Open';
      openBtn.addEventListener('click', () => openProject(p.id));
      const delBtn = document.createElement('button');
      delBtn.className = 'ghost';
      delBtn.textContent = 'Delete';
      delBtn.addEventListener('click', async () => {
        if (!confirm('Delete "' + p.name + '"?')) return;
        await api('/api/projects/' + p.id, { method: 'DELETE' });
        openDashboard();
      });
      actions.append(openBtn, delBtn);
      card.append(title, desc, actions);
      grid.appendChild(card);
    });
  }

  async function newProject() {
    const project = await api('/api/projects', { method: 'POST', body: {} });
    showProject(project);
  }

  async function openProject(id) {
    showProject(await api('/api/projects/' + id));
  }

  function showProject(project) {
    state.project = project;
    el('projectName').textContent = project.name;
    renderChat();
    renderPreview(project.code || INITIAL_CODE);
    setView('editor');
  }

  async function publishProject() {
    const data = await api('/api/projects/' + state.project.id + '/publish', { method: 'POST' });
    navigator.clipboard.writeText(data.url);
    alert('Share link copied: ' + data.url);
  }

  function exportProject() {
    window.location = '/api/projects/' + state.project.id + '/export';
  }

  // ── Chat + preview ──
  function renderChat() {
    const log = el('chatLog');
    log.innerHTML = '';
    const messages = [{ role: 'assistant', content: WELCOME }].concat(state.project.messages);
    messages.forEach(m => log.appendChild(messageNode(m)));
    log.scrollTop = log.scrollHeight;
  }

  function messageNode(m) {
    const node = document.createElement('div');
    node.className = 'msg ' + m.role + (m.isStreaming ? ' streaming' : '');
    if (m.isStreaming) {
      const label = document.createElement('span');
      label.className = 'state';
      label.textContent = m.stateLabel || 'Writing code...';
      node.appendChild(label);
      node.appendChild(document.createTextNode(m.streamContent || 'Initializing...'));
    } else {
      node.textContent = m.content;
    }
    return node;
  }

  function renderPreview(code) {
    el('previewFrame').srcdoc = code;
    el('codeView').textContent = code;
  }

  function setViewMode(mode) {
    state.viewMode = mode;
    el('previewFrame').style.display = mode === 'preview' ? '' : 'none';
    el('codeView').style.display = mode === 'code' ? '' : 'none';
    el('modePreview').classList.toggle('active', mode === 'preview');
    el('modeCode').classList.toggle('active', mode === 'code');
  }

  function setDevice(device) {
    state.device = device;
    el('canvas').classList.toggle('mobile', device === 'mobile');
    el('deviceDesktop').classList.toggle('active', device === 'desktop');
    el('deviceMobile').classList.toggle('active', device === 'mobile');
  }

  const STATE_LABELS = {
    coding: 'Writing code...',
    assets: 'Generating images...',
    repairing: 'Fixing output, retrying...',
  };

  async function handleGenerate() {
    const prompt = el('promptInput').value.trim();
    if (!prompt || state.generating) return;

    state.generating = true;
    el('sendBtn').disabled = true;
    el('promptInput').value = '';

    const log = el('chatLog');
    log.appendChild(messageNode({ role: 'user', content: prompt }));
    const live = { role: 'assistant', isStreaming: true, streamContent: '', stateLabel: STATE_LABELS.coding };
    let liveNode = messageNode(live);
    log.appendChild(liveNode);

    const redraw = () => {
      const next = messageNode(live);
      log.replaceChild(next, liveNode);
      liveNode = next;
      next.scrollTop = next.scrollHeight;
      log.scrollTop = log.scrollHeight;
    };

    try {
      const res = await fetch('/api/projects/' + state.project.id + '/generate', {
        method: 'POST',
        headers: { 'Content-Type': 'application/json' },
        body: JSON.stringify({ prompt, model: el('modelSelect').value }),
      });
      if (!res.ok) {
        const data = await res.json();
        throw new Error(data.error || 'HTTP ' + res.status);
      }

      const reader = res.body.getReader();
      const decoder = new TextDecoder();
      let pending = '';
      while (true) {
        const { done, value } = await reader.read();
        if (done) break;
        pending += decoder.decode(value, { stream: true });
        const lines = pending.split('\n');
        pending = lines.pop();
        for (const line of lines) {
          if (!line.trim()) continue;
          const event = JSON.parse(line);
          if (event.type === 'state') {
            if (event.state === 'coding') live.streamContent = '';
            if (STATE_LABELS[event.state]) live.stateLabel = STATE_LABELS[event.state];
            redraw();
          } else if (event.type === 'chunk') {
            live.streamContent += event.text;
            redraw();
          } else if (event.type === 'done') {
            state.project = event.project;
            el('projectName').textContent = event.project.name;
            renderPreview(event.app.code);
            setViewMode('preview');
            log.replaceChild(messageNode(event.message), liveNode);
          } else if (event.type === 'error') {
            log.replaceChild(messageNode(event.message), liveNode);
          }
        }
      }
    } catch (e) {
      log.replaceChild(messageNode({ role: 'assistant', content: e.message }), liveNode);
    } finally {
      state.generating = false;
      el('sendBtn').disabled = false;
      refreshSession();
    }
  }

  el('promptInput').addEventListener('keydown', e => {
    if (e.key === 'Enter' && !e.shiftKey) { e.preventDefault(); handleGenerate(); }
  });

  // ── Pricing ──
  async function loadPacks() {
    const data = await api('/api/credits/packs');
    const grid = el('packGrid');
    grid.innerHTML = '';
    data.packs.forEach(pack => {
      const card = document.createElement('div');
      card.className = 'card';
      const title = document.createElement('h3');
      title.textContent = pack.credits + ' credits';
      const price = document.createElement('p');
      price.textContent = '$' + pack.cost.toFixed(2);
      const buy = document.createElement('button');
      buy.textContent = 'Buy';
      buy.addEventListener('click', async () => {
        try {
          const res = await api('/api/credits/purchase', { method: 'POST', body: { pack: pack.id } });
          state.user = res.user;
          renderCredits();
        } catch (e) { el('pricingError').textContent = e.message; }
      });
      card.append(title, price, buy);
      grid.appendChild(card);
    });
  }

  // ── Admin ──
  async function loadUsers() {
    const data = await api('/api/admin/users');
    const rows = el('userRows');
    rows.innerHTML = '';
    data.users.forEach(u => {
      const tr = document.createElement('tr');
      [u.name, u.email || '(guest)', u.freeCredits, u.purchasedCredits, u.isBanned ? 'Banned' : 'Active']
        .forEach(v => { const td = document.createElement('td'); td.textContent = v; tr.appendChild(td); });
      const td = document.createElement('td');
      const btn = document.createElement('button');
      btn.className = 'ghost';
      btn.textContent = u.isBanned ? 'Unban' : 'Ban';
      btn.addEventListener('click', async () => {
        await api('/api/admin/users/' + u.id + '/ban', { method: 'POST' });
        loadUsers();
      });
      td.appendChild(btn);
      tr.appendChild(td);
      rows.appendChild(tr);
    });
  }

  // ── Boot ──
  async function boot() {
    const models = await api('/api/models');
    models.models.forEach(m => {
      const opt = document.createElement('option');
      opt.value = m;
      opt.textContent = m;
      opt.selected = m === models.default;
      el('modelSelect').appendChild(opt);
    });

    const session = await api('/api/session');
    applySession(session);

    if (session.googleClientId) {
      const script = document.createElement('script');
      script.src = 'https://accounts.google.com/gsi/client';
      script.onload = () => {
        google.accounts.id.initialize({ client_id: session.googleClientId, callback: signInGoogle });
        google.accounts.id.renderButton(el('googleButton'), { theme: 'filled_black' });
      };
      document.head.appendChild(script);
    }

    if (state.user) openDashboard();
    else setView('landing');
  }

  boot();
</script>
</body>
</html>
"""

PUBLIC_PAGE = r"""<!DOCTYPE html>
<html lang="en">
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width, initial-scale=1.0">
<title>Shared app</title>
<style>
  *, *::before, *::after { box-sizing: border-box; margin: 0; padding: 0; }
  body { background: #0f0f0f; color: #e0e0e0; height: 100vh; font-family: -apple-system, sans-serif; }
  iframe { border: none; width: 100%; height: 100vh; background: #fff; }
  .missing { display: flex; align-items: center; justify-content: center; height: 100vh; }
</style>
</head>
<body>
<iframe id="frame" title="Shared app" sandbox="allow-scripts allow-modals allow-forms allow-popups"></iframe>
<script>
  const PROJECT_ID = /*__PROJECT_ID__*/;
  fetch('/api/public/' + encodeURIComponent(PROJECT_ID))
    .then(res => res.ok ? res.json() : Promise.reject())
    .then(data => {
      document.title = data.name;
      document.getElementById('frame').srcdoc = data.code;
    })
    .catch(() => {
      document.body.innerHTML = '<div class="missing">This app is not available.</div>';
    });
</script>
</body>
</html>
"""

app = create_app()
