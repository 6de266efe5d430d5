# pinboard.py
"""
Pinboard: Pinterest-style image sharing API in a single Flask module

Key production notes:
 - Configure via environment variables (see defaults below).
 - Serve with a WSGI server (recommended): e.g.
     gunicorn -w 4 -b 0.0.0.0:5000 pinboard:app
 - Uploaded images go to a local blob folder and are addressed through
   PINBOARD_PUBLIC_UPLOAD_URL. In production point that at a CDN or a
   reverse proxy (nginx) serving the folder directly.
 - The database is the only shared state. Handlers keep nothing between
   requests, so any number of workers can run side by side.
"""

import os
import base64
import binascii
import datetime
import functools
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Optional
from urllib.parse import quote_plus

from flask import (
    Flask,
    request,
    jsonify,
    g,
    send_from_directory,
    render_template_string,
    abort,
)
import jwt  # PyJWT
from werkzeug.exceptions import HTTPException, RequestEntityTooLarge
from werkzeug.routing import IntegerConverter
from werkzeug.security import generate_password_hash, check_password_hash
from werkzeug.utils import secure_filename
from flask_cors import CORS

from schemas import (
    ApiError,
    AuthError,
    ConflictError,
    FeedQuery,
    ForbiddenError,
    LoginIn,
    NotFoundError,
    PageQuery,
    PinCreateIn,
    PinOut,
    PinPage,
    ProfileOut,
    ProfileUpdateIn,
    PublicUserOut,
    SQLITE_MAX_INT,
    SignupIn,
    UnexpectedError,
    UserOut,
    UserPage,
    UserSummary,
    ValidationError,
    error_for_status,
    parse,
)

# -----------------------
# Configuration (env)
# -----------------------
BASE_DIR = Path(__file__).parent.resolve()
DATABASE = os.environ.get("PINBOARD_DATABASE", str(BASE_DIR / "pinboard.db"))
UPLOAD_FOLDER = os.environ.get("PINBOARD_UPLOAD_FOLDER", str(BASE_DIR / "uploads"))
PUBLIC_UPLOAD_URL = os.environ.get("PINBOARD_PUBLIC_UPLOAD_URL", "/uploads")
JWT_SECRET = os.environ.get("PINBOARD_JWT_SECRET", None)
JWT_SECRET_IS_FALLBACK = not JWT_SECRET
if not JWT_SECRET:
    # In production this MUST be set. For dev only fallback:
    JWT_SECRET = "please_set_PINBOARD_JWT_SECRET_in_env"
JWT_ALGORITHM = os.environ.get("PINBOARD_JWT_ALGORITHM", "HS256")
JWT_EXP_SECONDS = int(os.environ.get("PINBOARD_JWT_EXP_SECONDS", 60 * 60 * 24 * 7))  # default 7 days

MAX_CONTENT_LENGTH = int(os.environ.get("PINBOARD_MAX_CONTENT_LENGTH", 5 * 1024 * 1024))  # 5 MB by default
ALLOWED_EXTENSIONS = set(os.environ.get("PINBOARD_ALLOWED_EXT", "png,jpg,jpeg,gif,webp").split(","))
CORS_ORIGINS = os.environ.get("PINBOARD_CORS_ORIGINS", "*")  # set to origin(s) in prod

# ISO-8601 UTC with milliseconds, so feed order survives bursts of inserts
NOW_SQL = "strftime('%Y-%m-%dT%H:%M:%fZ', 'now')"

os.makedirs(UPLOAD_FOLDER, exist_ok=True)

# -----------------------
# App init
# -----------------------
class RowIdConverter(IntegerConverter):
    """`<int:...>` that stops matching above the sqlite INTEGER range."""

    def __init__(self, url_map, fixed_digits=0, min=None, max=SQLITE_MAX_INT, signed=False):
        super().__init__(url_map, fixed_digits=fixed_digits, min=min, max=max, signed=signed)


app = Flask(__name__, static_folder=None)
app.url_map.converters["int"] = RowIdConverter
app.config["UPLOAD_FOLDER"] = UPLOAD_FOLDER
app.config["PUBLIC_UPLOAD_URL"] = PUBLIC_UPLOAD_URL
app.config["DATABASE"] = DATABASE
app.config["SECRET_KEY"] = JWT_SECRET
app.config["MAX_CONTENT_LENGTH"] = MAX_CONTENT_LENGTH

CORS(app, resources={r"/api/*": {"origins": CORS_ORIGINS}})

logging.basicConfig(level=os.environ.get("PINBOARD_LOG_LEVEL", "INFO"))
logger = logging.getLogger("pinboard")

if JWT_SECRET_IS_FALLBACK:
    logger.warning("PINBOARD_JWT_SECRET is not set; using the insecure development secret")


# -----------------------
# Database helpers
# -----------------------
def _icontains(haystack, needle):
    if haystack is None or needle is None:
        return 0
    return int(needle.casefold() in haystack.casefold())


def get_db():
    """
    Returns the sqlite3.Connection bound to the current app context.
    Foreign keys are switched on per connection; the cascades depend on it.
    """
    if "db" not in g:
        conn = sqlite3.connect(app.config["DATABASE"], check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.create_function("icontains", 2, _icontains, deterministic=True)
        cur = conn.cursor()
        cur.execute("PRAGMA journal_mode=WAL;")
        cur.execute("PRAGMA synchronous=NORMAL;")
        cur.execute("PRAGMA foreign_keys=ON;")
        cur.close()
        g.db = conn
    return g.db


@app.teardown_appcontext
def close_db(exc):
    db = g.pop("db", None)
    if db is not None:
        db.close()


def query_db(query, args=(), one=False):
    cur = get_db().execute(query, args)
    rv = cur.fetchall()
    cur.close()
    return (rv[0] if rv else None) if one else rv


def count_db(query, args=()) -> int:
    row = query_db(query, args, one=True)
    return row[0] if row else 0


def execute_db(query, args=()):
    conn = get_db()
    try:
        cur = conn.execute(query, args)
    except sqlite3.Error:
        conn.rollback()
        raise
    conn.commit()
    lastrowid = cur.lastrowid
    cur.close()
    return lastrowid


@contextmanager
def write_transaction():
    """
    Holds the database write lock from the first statement to the commit.
    Rolls back on any exception raised inside the block.
    """
    conn = get_db()
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except BaseException:
        conn.rollback()
        raise
    else:
        conn.commit()


# -----------------------
# DB initialization
# -----------------------
SCHEMA = f"""
PRAGMA foreign_keys = ON;

CREATE TABLE IF NOT EXISTS users (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    email TEXT UNIQUE NOT NULL,
    username TEXT UNIQUE NOT NULL,
    first_name TEXT NOT NULL DEFAULT '',
    last_name TEXT NOT NULL DEFAULT '',
    password_hash TEXT NOT NULL,
    avatar_url TEXT NOT NULL DEFAULT '',
    bio TEXT NOT NULL DEFAULT '',
    created_at TEXT NOT NULL DEFAULT ({NOW_SQL}),
    updated_at TEXT NOT NULL DEFAULT ({NOW_SQL})
);

CREATE TABLE IF NOT EXISTS pins (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    title TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    image_url TEXT NOT NULL,
    link TEXT NOT NULL DEFAULT '',
    category TEXT NOT NULL DEFAULT 'general',
    user_id INTEGER NOT NULL,
    created_at TEXT NOT NULL DEFAULT ({NOW_SQL}),
    updated_at TEXT NOT NULL DEFAULT ({NOW_SQL}),
    FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS pin_likes (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    pin_id INTEGER NOT NULL,
    user_id INTEGER NOT NULL,
    created_at TEXT NOT NULL DEFAULT ({NOW_SQL}),
    UNIQUE(pin_id, user_id),
    FOREIGN KEY(pin_id) REFERENCES pins(id) ON DELETE CASCADE,
    FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS pin_saves (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    pin_id INTEGER NOT NULL,
    user_id INTEGER NOT NULL,
    created_at TEXT NOT NULL DEFAULT ({NOW_SQL}),
    UNIQUE(pin_id, user_id),
    FOREIGN KEY(pin_id) REFERENCES pins(id) ON DELETE CASCADE,
    FOREIGN KEY(user_id) REFERENCES users(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS user_follows (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    follower_id INTEGER NOT NULL,
    following_id INTEGER NOT NULL,
    created_at TEXT NOT NULL DEFAULT ({NOW_SQL}),
    UNIQUE(follower_id, following_id),
    CHECK (follower_id != following_id),
    FOREIGN KEY(follower_id) REFERENCES users(id) ON DELETE CASCADE,
    FOREIGN KEY(following_id) REFERENCES users(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_pins_user_id ON pins(user_id);
CREATE INDEX IF NOT EXISTS idx_pins_created_at ON pins(created_at DESC);
CREATE INDEX IF NOT EXISTS idx_pins_category ON pins(category);
CREATE INDEX IF NOT EXISTS idx_pin_likes_user_id ON pin_likes(user_id);
CREATE INDEX IF NOT EXISTS idx_pin_saves_user_id ON pin_saves(user_id);
CREATE INDEX IF NOT EXISTS idx_user_follows_following ON user_follows(following_id);

CREATE TRIGGER IF NOT EXISTS users_touch_updated_at
AFTER UPDATE ON users FOR EACH ROW WHEN NEW.updated_at = OLD.updated_at
BEGIN
    UPDATE users SET updated_at = {NOW_SQL} WHERE id = NEW.id;
END;

CREATE TRIGGER IF NOT EXISTS pins_touch_updated_at
AFTER UPDATE ON pins FOR EACH ROW WHEN NEW.updated_at = OLD.updated_at
BEGIN
    UPDATE pins SET updated_at = {NOW_SQL} WHERE id = NEW.id;
END;
"""


def init_db():
    db = get_db()
    cur = db.cursor()
    cur.executescript(SCHEMA)
    db.commit()
    cur.close()


# -----------------------
# JWT helpers
# -----------------------
def create_token(user_id: int):
    now = datetime.datetime.now(datetime.timezone.utc)
    payload = {
        "sub": str(user_id),
        "iat": now,
        "exp": now + datetime.timedelta(seconds=JWT_EXP_SECONDS),
    }
    return jwt.encode(payload, app.config["SECRET_KEY"], algorithm=JWT_ALGORITHM)


def decode_token(token: str) -> Optional[dict]:
    try:
        return jwt.decode(token, app.config["SECRET_KEY"], algorithms=[JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        return None
    except jwt.InvalidTokenError:
        return None


def _bearer_token() -> Optional[str]:
    auth = request.headers.get("Authorization", "")
    if not auth.startswith("Bearer "):
        return None
    return auth.split(" ", 1)[1].strip()


def _user_from_token(token: str) -> Optional[dict]:
    payload = decode_token(token)
    if not payload:
        return None
    try:
        user_id = int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        return None
    return get_user_by_id(user_id)


def jwt_required(f):
    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        token = _bearer_token()
        if not token:
            raise AuthError("Missing or invalid Authorization header")
        g.current_user = _user_from_token(token)
        if not g.current_user:
            raise AuthError("Invalid or expired token")
        return f(*args, **kwargs)
    return wrapper


def jwt_optional(f):
    """Public routes: attach the caller when a valid token is presented, else view anonymously."""
    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        token = _bearer_token()
        g.current_user = _user_from_token(token) if token else None
        return f(*args, **kwargs)
    return wrapper


def viewer_id() -> Optional[int]:
    user = g.get("current_user")
    return user["id"] if user else None


# -----------------------
# User helpers
# -----------------------
def user_to_dict(row):
    if row is None:
        return None
    return UserOut.model_validate(dict(row)).model_dump()


def get_user_by_id(user_id: int):
    r = query_db("SELECT * FROM users WHERE id = ?", (user_id,), one=True)
    return user_to_dict(r)


def require_user(user_id: int):
    row = query_db("SELECT * FROM users WHERE id = ?", (user_id,), one=True)
    if row is None:
        raise NotFoundError("User not found")
    return row


def default_avatar_url(first_name: str, last_name: str, username: str) -> str:
    name = f"{first_name} {last_name}".strip() or username
    return f"https://ui-avatars.com/api/?name={quote_plus(name)}&background=3b82f6&color=fff&size=200"


# upload helpers
def allowed_file_extension(filename: str) -> bool:
    if "." not in filename:
        return False
    ext = filename.rsplit(".", 1)[1].lower()
    return ext in ALLOWED_EXTENSIONS


def is_image_mimetype(file_storage) -> bool:
    # some clients set wrong mimetype; the magic bytes are checked as well
    mimetype = (file_storage.mimetype or "").lower()
    return mimetype.startswith("image/")


def sniff_image_type(data: bytes) -> Optional[str]:
    if data[:3] == b"\xff\xd8\xff":
        return "jpg"
    if data[:8] == b"\x89PNG\r\n\x1a\n":
        return "png"
    if data[:6] in (b"GIF87a", b"GIF89a"):
        return "gif"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "webp"
    return None


def _checked_image(data: bytes):
    if not data:
        raise ValidationError("Image is empty")
    ext = sniff_image_type(data)
    if ext is None or ext not in ALLOWED_EXTENSIONS:
        raise ValidationError("Only image files are allowed")
    return data, ext


def read_upload(file_storage):
    """Validates a multipart image field and returns (bytes, extension)."""
    filename = secure_filename(file_storage.filename) if file_storage.filename else ""
    if not filename or not allowed_file_extension(filename) or not is_image_mimetype(file_storage):
        raise ValidationError("Only image files are allowed")
    return _checked_image(file_storage.read())


def decode_base64_image(image_base64: str):
    """Accepts a data URL or bare base64 and returns (bytes, extension)."""
    if "," in image_base64:
        _, b64 = image_base64.split(",", 1)
    else:
        b64 = image_base64
    try:
        data = base64.b64decode(b64, validate=True)
    except (binascii.Error, ValueError):
        raise ValidationError("Invalid base64 image") from None
    return _checked_image(data)


def store_image(data: bytes, ext: str) -> str:
    """Writes image bytes to the blob folder and returns their public URL."""
    name = f"{uuid.uuid4().hex}.{ext}"
    path = os.path.join(app.config["UPLOAD_FOLDER"], name)
    with open(path, "wb") as f:
        f.write(data)
    return f"{app.config['PUBLIC_UPLOAD_URL'].rstrip('/')}/{name}"


# -----------------------
# Pin queries
# -----------------------
PIN_SELECT = """
SELECT p.*,
       u.username AS owner_username,
       u.first_name AS owner_first_name,
       u.last_name AS owner_last_name,
       u.avatar_url AS owner_avatar_url,
       (SELECT COUNT(*) FROM pin_likes l WHERE l.pin_id = p.id) AS likes_count,
       (SELECT COUNT(*) FROM pin_saves s WHERE s.pin_id = p.id) AS saves_count,
       EXISTS (SELECT 1 FROM pin_likes l WHERE l.pin_id = p.id AND l.user_id = ?) AS liked_by_me,
       EXISTS (SELECT 1 FROM pin_saves s WHERE s.pin_id = p.id AND s.user_id = ?) AS saved_by_me
FROM pins p
JOIN users u ON u.id = p.user_id
"""

NEWEST_FIRST = "p.created_at DESC, p.id DESC"


def pin_to_out(row, viewer=None) -> PinOut:
    return PinOut(
        id=row["id"],
        title=row["title"],
        description=row["description"],
        image_url=row["image_url"],
        link=row["link"],
        category=row["category"],
        user_id=row["user_id"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
        user=UserSummary(
            id=row["user_id"],
            username=row["owner_username"],
            first_name=row["owner_first_name"],
            last_name=row["owner_last_name"],
            avatar_url=row["owner_avatar_url"],
        ),
        likes_count=row["likes_count"],
        saves_count=row["saves_count"],
        liked_by_me=bool(row["liked_by_me"]) if viewer else None,
        saved_by_me=bool(row["saved_by_me"]) if viewer else None,
    )


def select_pins(where="", args=(), joins="", order_by=NEWEST_FIRST, page: Optional[PageQuery] = None, viewer=None):
    sql = f"{PIN_SELECT} {joins} {where} ORDER BY {order_by}"
    params = [viewer, viewer, *args]
    if page is not None:
        sql += " LIMIT ? OFFSET ?"
        params += [page.limit, page.offset]
    return [pin_to_out(r, viewer) for r in query_db(sql, params)]


def get_pin_out(pin_id: int, viewer=None) -> Optional[PinOut]:
    pins = select_pins("WHERE p.id = ?", (pin_id,), viewer=viewer)
    return pins[0] if pins else None


def require_pin(pin_id: int):
    row = query_db("SELECT id, user_id FROM pins WHERE id = ?", (pin_id,), one=True)
    if row is None:
        raise NotFoundError("Pin not found")
    return row


def pin_page(pins, page: PageQuery) -> dict:
    # hasMore is a heuristic: a full page means "ask again", even if nothing is left
    return PinPage(pins=pins, page=page.page, hasMore=len(pins) == page.limit).model_dump(exclude_none=True)


# -----------------------
# Toggle relationships
# -----------------------
# kind -> (table, object column, actor column, message when the object is gone)
RELATIONSHIPS = {
    "like": ("pin_likes", "pin_id", "user_id", "Pin not found"),
    "save": ("pin_saves", "pin_id", "user_id", "Pin not found"),
    "follow": ("user_follows", "following_id", "follower_id", "User not found"),
}


def toggle_relationship(kind: str, object_id: int, actor_id: int) -> bool:
    """
    Flips the (actor, object) edge of the given kind and returns the new state.

    The delete and the conditional insert run in one IMMEDIATE transaction, so
    two toggles from the same actor serialize on the write lock. An insert
    that still meets the unique pair is reported as active, never as an error.
    """
    table, object_col, actor_col, gone_message = RELATIONSHIPS[kind]
    try:
        with write_transaction() as conn:
            removed = conn.execute(
                f"DELETE FROM {table} WHERE {object_col} = ? AND {actor_col} = ?",
                (object_id, actor_id),
            ).rowcount
            if not removed:
                conn.execute(
                    f"INSERT INTO {table} ({object_col}, {actor_col}) VALUES (?, ?) ON CONFLICT DO NOTHING",
                    (object_id, actor_id),
                )
    except sqlite3.IntegrityError as exc:
        if "FOREIGN KEY" not in str(exc):
            raise
        # object deleted between the existence check and the write
        raise NotFoundError(gone_message) from None
    active = not removed
    logger.debug("%s %s->%s active=%s", kind, actor_id, object_id, active)
    return active


def _toggle_pin(kind: str, pin_id: int):
    require_pin(pin_id)
    active = toggle_relationship(kind, pin_id, g.current_user["id"])
    table = RELATIONSHIPS[kind][0]
    count = count_db(f"SELECT COUNT(*) FROM {table} WHERE pin_id = ?", (pin_id,))
    return active, count


# -----------------------
# Routes: auth
# -----------------------
@app.route("/api/auth/signup", methods=["POST"])
def signup():
    data = parse(SignupIn, request.get_json(silent=True))

    existing = query_db(
        "SELECT email, username FROM users WHERE email = ? OR username = ?",
        (data.email, data.username),
        one=True,
    )
    if existing:
        raise ConflictError("Email already exists" if existing["email"] == data.email else "Username already exists")

    try:
        user_id = execute_db(
            "INSERT INTO users (email, username, first_name, last_name, password_hash, avatar_url) "
            "VALUES (?, ?, ?, ?, ?, ?)",
            (
                data.email,
                data.username,
                data.first_name,
                data.last_name,
                generate_password_hash(data.password),
                default_avatar_url(data.first_name, data.last_name, data.username),
            ),
        )
    except sqlite3.IntegrityError:
        # lost a race against a concurrent signup with the same email/username
        raise ConflictError("Email or username already exists") from None

    logger.info("Created user %s (%s)", user_id, data.username)
    return jsonify({
        "message": "User created successfully",
        "token": create_token(user_id),
        "user": get_user_by_id(user_id),
    }), 201


@app.route("/api/auth/login", methods=["POST"])
def login():
    data = parse(LoginIn, request.get_json(silent=True))

    row = query_db("SELECT * FROM users WHERE email = ?", (data.email,), one=True)
    if not row or not check_password_hash(row["password_hash"], data.password):
        logger.warning("Failed login for %s", data.email)
        raise AuthError("Invalid credentials")

    return jsonify({
        "message": "Login successful",
        "token": create_token(row["id"]),
        "user": user_to_dict(row),
    })


@app.route("/api/auth/me", methods=["GET"])
@jwt_required
def me():
    return jsonify({"user": g.current_user})


@app.route("/api/auth/me", methods=["PUT"])
@jwt_required
def update_profile():
    data = parse(ProfileUpdateIn, request.get_json(silent=True))
    updates = data.model_dump(exclude_none=True)
    if not updates:
        raise ValidationError("Nothing to update")
    assignments = ", ".join(f"{column} = ?" for column in updates)
    execute_db(f"UPDATE users SET {assignments} WHERE id = ?", (*updates.values(), g.current_user["id"]))
    return jsonify({"user": get_user_by_id(g.current_user["id"])})


@app.route("/api/auth/me", methods=["DELETE"])
@jwt_required
def delete_account():
    execute_db("DELETE FROM users WHERE id = ?", (g.current_user["id"],))
    logger.info("Deleted user %s and everything it owned", g.current_user["id"])
    return jsonify({"message": "Account deleted"})


# -----------------------
# Routes: pins
# -----------------------
@app.route("/api/pins", methods=["GET"])
@jwt_optional
def list_pins():
    query = parse(FeedQuery, request.args.to_dict())
    clauses, args = [], []
    if query.search:
        clauses.append("(icontains(p.title, ?) OR icontains(p.description, ?))")
        args += [query.search, query.search]
    if query.category:
        clauses.append("p.category = ?")
        args.append(query.category)
    where = "WHERE " + " AND ".join(clauses) if clauses else ""
    pins = select_pins(where, args, page=query, viewer=viewer_id())
    return jsonify(pin_page(pins, query))


@app.route("/api/pins", methods=["POST"])
@jwt_required
def create_pin():
    # multipart/form-data or JSON (image_base64) accepted
    if request.is_json:
        body = request.get_json(silent=True) or {}
        fields = parse(PinCreateIn, body)
        image = decode_base64_image(fields.image_base64) if fields.image_base64 else None
    else:
        fields = parse(PinCreateIn, request.form.to_dict())
        file = request.files.get("image")
        image = read_upload(file) if file else None
    if image is None:
        raise ValidationError("Title and image are required")

    # Upload first. If the insert below fails the blob is left orphaned.
    image_url = store_image(*image)
    pin_id = execute_db(
        "INSERT INTO pins (title, description, image_url, link, category, user_id) VALUES (?, ?, ?, ?, ?, ?)",
        (fields.title, fields.description, image_url, fields.link, fields.category, g.current_user["id"]),
    )
    logger.info("User %s created pin %s", g.current_user["id"], pin_id)
    pin = get_pin_out(pin_id, viewer=g.current_user["id"])
    return jsonify({"message": "Pin created successfully", "pin": pin.model_dump(exclude_none=True)}), 201


@app.route("/api/pins/<int:pin_id>", methods=["GET"])
@jwt_optional
def get_pin(pin_id):
    pin = get_pin_out(pin_id, viewer=viewer_id())
    if pin is None:
        raise NotFoundError("Pin not found")
    return jsonify({"pin": pin.model_dump(exclude_none=True)})


@app.route("/api/pins/<int:pin_id>", methods=["DELETE"])
@jwt_required
def delete_pin(pin_id):
    row = require_pin(pin_id)
    if row["user_id"] != g.current_user["id"]:
        raise ForbiddenError("Not authorized to delete this pin")
    execute_db("DELETE FROM pins WHERE id = ?", (pin_id,))
    logger.info("User %s deleted pin %s", g.current_user["id"], pin_id)
    return jsonify({"message": "Pin deleted successfully"})


@app.route("/api/pins/<int:pin_id>/like", methods=["POST"])
@jwt_required
def like_pin(pin_id):
    liked, likes_count = _toggle_pin("like", pin_id)
    return jsonify({"message": "Pin liked" if liked else "Pin unliked", "liked": liked, "likes_count": likes_count})


@app.route("/api/pins/<int:pin_id>/save", methods=["POST"])
@jwt_required
def save_pin(pin_id):
    saved, saves_count = _toggle_pin("save", pin_id)
    return jsonify({"message": "Pin saved" if saved else "Pin unsaved", "saved": saved, "saves_count": saves_count})


# -----------------------
# Routes: users
# -----------------------
@app.route("/api/users/<int:user_id>", methods=["GET"])
@jwt_optional
def get_profile(user_id):
    row = require_user(user_id)
    viewer = viewer_id()
    is_following = None
    if viewer and viewer != user_id:
        is_following = bool(count_db(
            "SELECT COUNT(*) FROM user_follows WHERE follower_id = ? AND following_id = ?",
            (viewer, user_id),
        ))
    profile = ProfileOut(
        **PublicUserOut.model_validate(dict(row)).model_dump(),
        pins_count=count_db("SELECT COUNT(*) FROM pins WHERE user_id = ?", (user_id,)),
        followers_count=count_db("SELECT COUNT(*) FROM user_follows WHERE following_id = ?", (user_id,)),
        following_count=count_db("SELECT COUNT(*) FROM user_follows WHERE follower_id = ?", (user_id,)),
        is_following=is_following,
    )
    return jsonify({"user": profile.model_dump(exclude_none=True)})


@app.route("/api/users/<int:user_id>/pins", methods=["GET"])
@jwt_optional
def user_pins(user_id):
    query = parse(PageQuery, request.args.to_dict())
    pins = select_pins("WHERE p.user_id = ?", (user_id,), page=query, viewer=viewer_id())
    return jsonify(pin_page(pins, query))


@app.route("/api/users/<int:user_id>/saved", methods=["GET"])
@jwt_required
def saved_pins(user_id):
    if user_id != g.current_user["id"]:
        raise ForbiddenError("Not authorized")
    query = parse(PageQuery, request.args.to_dict())
    pins = select_pins(
        "WHERE mine.user_id = ?",
        (user_id,),
        joins="JOIN pin_saves mine ON mine.pin_id = p.id",
        order_by="mine.created_at DESC, mine.id DESC",
        page=query,
        viewer=user_id,
    )
    return jsonify(pin_page(pins, query))


@app.route("/api/users/<int:user_id>/follow", methods=["POST"])
@jwt_required
def follow(user_id):
    if user_id == g.current_user["id"]:
        raise ValidationError("Cannot follow yourself")
    require_user(user_id)
    following = toggle_relationship("follow", user_id, g.current_user["id"])
    followers_count = count_db("SELECT COUNT(*) FROM user_follows WHERE following_id = ?", (user_id,))
    return jsonify({
        "message": "User followed" if following else "User unfollowed",
        "following": following,
        "followers_count": followers_count,
    })


def _follow_edges(user_id: int, match_col: str, other_col: str):
    query = parse(PageQuery, request.args.to_dict())
    rows = query_db(
        f"""
        SELECT u.id, u.username, u.first_name, u.last_name, u.avatar_url
        FROM user_follows f JOIN users u ON u.id = f.{other_col}
        WHERE f.{match_col} = ?
        ORDER BY f.created_at DESC, f.id DESC
        LIMIT ? OFFSET ?
        """,
        (user_id, query.limit, query.offset),
    )
    users = [UserSummary.model_validate(dict(r)) for r in rows]
    return jsonify(UserPage(users=users, page=query.page, hasMore=len(users) == query.limit).model_dump())


@app.route("/api/users/<int:user_id>/followers", methods=["GET"])
def followers(user_id):
    return _follow_edges(user_id, "following_id", "follower_id")


@app.route("/api/users/<int:user_id>/following", methods=["GET"])
def following(user_id):
    return _follow_edges(user_id, "follower_id", "following_id")


# -----------------------
# Routes: misc
# -----------------------
@app.route("/api/health", methods=["GET"])
def health():
    return jsonify({"status": "ok", "message": "Pinboard API is running!"})


@app.route("/uploads/<path:filename>", methods=["GET"])
def uploaded_file(filename):
    # Serve stored images (for small deployments; use a CDN or nginx at scale)
    safe_path = os.path.normpath(filename)
    if safe_path.startswith(".."):
        abort(404)
    return send_from_directory(app.config["UPLOAD_FOLDER"], filename, as_attachment=False)


# -----------------------
# Embedded single-page UI served at /
# -----------------------
INDEX_HTML = r"""
<!doctype html>
<html>
<head>
  <meta charset="utf-8" />
  <title>Pinboard</title>
  <meta name="viewport" content="width=device-width,initial-scale=1" />
  <style>
    body { font-family: Arial, sans-serif; max-width:1100px; margin: 20px auto; }
    .bar { display:flex; gap:8px; align-items:center; margin-bottom:12px; flex-wrap:wrap; }
    .grid { columns: 4 220px; column-gap: 12px; }
    .pin { break-inside: avoid; border:1px solid #eee; border-radius:12px; margin-bottom:12px; padding:8px; }
    .pin img { width:100%; border-radius:8px; }
    .small { font-size:0.85em; color:#666; }
    .toast { position:fixed; bottom:16px; right:16px; background:#222; color:#fff; padding:8px 12px; border-radius:6px; display:none; }
    button { cursor:pointer; padding:6px 10px; border-radius:6px; border:1px solid #ddd; background:#fff; }
    input, select { padding:6px; border-radius:6px; border:1px solid #ccc; }
  </style>
</head>
<body>
  <h1>Pinboard</h1>

  <div class="bar" id="auth">
    <input id="email" placeholder="email" />
    <input id="password" type="password" placeholder="password" />
    <input id="username" placeholder="username (signup)" />
    <button onclick="signup()">Sign up</button>
    <button onclick="login()">Log in</button>
    <span id="me" class="small"></span>
    <button onclick="logout()">Log out</button>
  </div>

  <div class="bar">
    <input id="pin-title" placeholder="title" />
    <input id="pin-category" placeholder="category" />
    <input type="file" id="pin-image" accept="image/*" />
    <button onclick="createPin()">Pin it</button>
  </div>

  <div class="bar">
    <input id="search" placeholder="search pins" />
    <button onclick="loadFeed()">Search</button>
  </div>

  <div class="grid" id="grid"></div>
  <button id="more" onclick="loadMore()">Load more</button>
  <div class="toast" id="toast"></div>

<script>
// Client-side view cache: pins keyed by id, in feed order. Written only after the server confirms.
const pinStore = {
  order: [], byId: new Map(), page: 0, hasMore: true, filters: {},
  replace(pins, filters) { this.order = []; this.byId = new Map(); this.filters = filters || {}; this.append(pins); },
  append(pins) { pins.forEach(p => { if (!this.byId.has(p.id)) this.order.push(p.id); this.byId.set(p.id, Object.assign({}, this.byId.get(p.id), p)); }); },
  merge(id, updates) { const p = this.byId.get(id); if (p) this.byId.set(id, Object.assign({}, p, updates)); },
  remove(id) { this.byId.delete(id); this.order = this.order.filter(x => x !== id); },
  all() { return this.order.map(id => this.byId.get(id)); }
};

function token(){ return localStorage.getItem('token') || ''; }
function headers(extra){ const h = Object.assign({}, extra || {}); if (token()) h['Authorization'] = 'Bearer ' + token(); return h; }
function toast(msg){ const t = document.getElementById('toast'); t.innerText = msg; t.style.display = 'block'; setTimeout(() => t.style.display = 'none', 2500); }
function escapeHtml(s){ return (s || '').replaceAll('&','&amp;').replaceAll('<','&lt;').replaceAll('>','&gt;').replaceAll('"','&quot;').replaceAll("'",'&#039;'); }

async function call(path, opts){
  const res = await fetch(path, opts);
  const body = await res.json().catch(() => ({}));
  if (!res.ok) { toast(body.message || 'Request failed'); throw new Error(body.error || 'error'); }
  return body;
}

function setSession(t, user){
  if (t) localStorage.setItem('token', t); else localStorage.removeItem('token');
  document.getElementById('me').innerText = user ? '@' + user.username : '';
  loadFeed();
}

async function signup(){
  const body = { email: val('email'), password: val('password'), username: val('username') };
  const j = await call('/api/auth/signup', { method:'POST', headers:{'Content-Type':'application/json'}, body: JSON.stringify(body) });
  setSession(j.token, j.user);
}
async function login(){
  const body = { email: val('email'), password: val('password') };
  const j = await call('/api/auth/login', { method:'POST', headers:{'Content-Type':'application/json'}, body: JSON.stringify(body) });
  setSession(j.token, j.user);
}
function logout(){ setSession(null, null); }
function val(id){ return document.getElementById(id).value; }

function render(){
  document.getElementById('grid').innerHTML = pinStore.all().map(p => `
    <div class="pin">
      <img src="${escapeHtml(p.image_url)}" />
      <div><strong>${escapeHtml(p.title)}</strong></div>
      <div class="small">@${escapeHtml(p.user.username)} · ${escapeHtml(p.category)}</div>
      <button onclick="toggle(${p.id}, 'like')">${p.liked_by_me ? 'Unlike' : 'Like'} (${p.likes_count})</button>
      <button onclick="toggle(${p.id}, 'save')">${p.saved_by_me ? 'Unsave' : 'Save'} (${p.saves_count})</button>
    </div>`).join('');
  document.getElementById('more').style.display = pinStore.hasMore ? 'inline-block' : 'none';
}

async function fetchPage(page, filters){
  const params = new URLSearchParams(Object.assign({ page: String(page), limit: '20' }, filters));
  return call('/api/pins?' + params.toString(), { headers: headers() });
}
async function loadFeed(){
  const filters = val('search') ? { search: val('search') } : {};
  const j = await fetchPage(1, filters);
  pinStore.replace(j.pins, filters); pinStore.page = 1; pinStore.hasMore = j.hasMore; render();
}
async function loadMore(){
  if (!pinStore.hasMore) return;
  const j = await fetchPage(pinStore.page + 1, pinStore.filters);
  pinStore.append(j.pins); pinStore.page += 1; pinStore.hasMore = j.hasMore; render();
}
async function toggle(id, kind){
  const j = await call(`/api/pins/${id}/${kind}`, { method:'POST', headers: headers() });
  if (kind === 'like') pinStore.merge(id, { liked_by_me: j.liked, likes_count: j.likes_count });
  else pinStore.merge(id, { saved_by_me: j.saved, saves_count: j.saves_count });
  render();
}
async function createPin(){
  const file = document.getElementById('pin-image').files[0];
  const fd = new FormData();
  fd.append('title', val('pin-title'));
  fd.append('category', val('pin-category'));
  if (file) fd.append('image', file);
  await call('/api/pins', { method:'POST', body: fd, headers: headers() });
  toast('Pinned!');
  loadFeed();
}

(async () => {
  if (token()) {
    try { const j = await call('/api/auth/me', { headers: headers() }); setSession(token(), j.user); return; }
    catch (e) { localStorage.removeItem('token'); }
  }
  loadFeed();
})();
</script>
</body>
</html>
"""


@app.route("/", methods=["GET"])
def index_ui():
    return render_template_string(INDEX_HTML)


# -----------------------
# Security headers
# -----------------------
@app.after_request
def set_security_headers(response):
    response.headers.setdefault("X-Frame-Options", "DENY")
    response.headers.setdefault("X-Content-Type-Options", "nosniff")
    response.headers.setdefault("Referrer-Policy", "no-referrer-when-downgrade")
    response.headers.setdefault("Permissions-Policy", "geolocation=(), microphone=()")
    # images may come from the CDN named by PINBOARD_PUBLIC_UPLOAD_URL
    response.headers.setdefault("Content-Security-Policy", "default-src 'self' 'unsafe-inline' data:; img-src 'self' data: https:;")
    # HSTS - only enable if serving HTTPS
    # response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
    return response


# -----------------------
# Error handlers
# -----------------------
@app.errorhandler(ApiError)
def handle_api_error(e):
    return jsonify(e.to_dict()), e.status_code


@app.errorhandler(RequestEntityTooLarge)
def too_large(e):
    limit_mb = app.config["MAX_CONTENT_LENGTH"] / (1024 * 1024)
    return handle_api_error(ValidationError(f"File too large. Maximum size is {limit_mb:g}MB."))


@app.errorhandler(HTTPException)
def http_error(e):
    if e.code == 404 and request.url_rule is None:
        message = "Route not found"
    else:
        message = e.description
    return handle_api_error(error_for_status(e.code, message))


@app.errorhandler(Exception)
def unexpected_error(e):
    logger.exception("Unhandled error on %s %s", request.method, request.path)
    return handle_api_error(UnexpectedError())


# -----------------------
# Startup: initialize DB on first run
# -----------------------
with app.app_context():
    init_db()
    logger.info("Database initialized/ready at %s", app.config["DATABASE"])
    logger.info("Uploads folder: %s", app.config["UPLOAD_FOLDER"])

# -----------------------
# Run server (for dev only). For production use a WSGI server.
# -----------------------
if __name__ == "__main__":
    app.run(host="0.0.0.0", port=int(os.environ.get("PORT", 5000)), debug=os.environ.get("FLASK_DEBUG", "0") == "1")
