"""VulnLab: deliberately SQL-injectable web app for sqlscanner testing.

Exposes query, path, form, JSON and authenticated surfaces backed by a real
SQLite database, so the crawler can find them and every technique has
something to fire on. Database errors are leaked to the page; SLEEP(n) and
pg_sleep(n) in input are simulated with a real delay.
"""

import os
import re
import time
import sqlite3

from flask import (
    Flask, request, render_template_string, redirect, session,
    jsonify, g,
)

app = Flask(__name__)
app.config["DB_PATH"] = os.path.join(os.path.dirname(__file__), "vulnlab.db")
app.secret_key = "vulnlab-not-a-secret"

USERS = {"alice": "wonderland", "bob": "builder"}

# ── Database helpers ────────────────────────────────────────────

def get_db():
    """Get a per-request SQLite connection."""
    if "db" not in g:
        g.db = sqlite3.connect(app.config["DB_PATH"])
        g.db.row_factory = sqlite3.Row
    return g.db


@app.teardown_appcontext
def close_db(exc):
    db = g.pop("db", None)
    if db:
        db.close()


def init_db(path=None):
    """Create tables and seed data."""
    path = path or app.config["DB_PATH"]
    conn = sqlite3.connect(path)
    cur = conn.cursor()
    for table in ("products", "users", "orders"):
        cur.execute(f"DROP TABLE IF EXISTS {table}")
    cur.execute("""
        CREATE TABLE products (
            id          INTEGER PRIMARY KEY,
            name        TEXT NOT NULL,
            category    TEXT NOT NULL,
            price       REAL NOT NULL,
            description TEXT NOT NULL
        )
    """)
    cur.execute("""
        CREATE TABLE users (
            id       INTEGER PRIMARY KEY,
            name     TEXT NOT NULL,
            email    TEXT NOT NULL,
            role     TEXT DEFAULT 'user'
        )
    """)
    cur.execute("""
        CREATE TABLE orders (
            id    INTEGER PRIMARY KEY,
            user  TEXT NOT NULL,
            item  TEXT NOT NULL,
            total REAL NOT NULL
        )
    """)
    blurb = ("Hand-assembled in small batches and tested for a full week before "
             "shipping. Every unit comes with a printed calibration sheet, a spare "
             "parts kit, two years of warranty coverage and free returns within "
             "thirty days. Reviewers praise the build quality, the quiet operation "
             "and the long battery life. ")
    products = [
        (1, "laptop", "computers", 999.0, "Ultralight laptop. " + blurb),
        (2, "keyboard", "accessories", 49.5, "Mechanical keyboard. " + blurb),
        (3, "monitor", "displays", 229.0, "27 inch monitor. " + blurb),
        (4, "mouse", "accessories", 19.9, "Wireless mouse. " + blurb),
    ]
    users = [
        (1, "admin", "admin@vulnlab.local", "admin"),
        (2, "alice", "alice@vulnlab.local", "user"),
        (3, "bob", "bob@vulnlab.local", "user"),
        (4, "secret_flag", "flag{sql1_d3t3ct3d}", "flag"),
    ]
    orders = [(1, "alice", "laptop", 999.0), (2, "alice", "mouse", 19.9),
              (3, "bob", "keyboard", 49.5)]
    cur.executemany("INSERT INTO products VALUES (?,?,?,?,?)", products)
    cur.executemany("INSERT INTO users VALUES (?,?,?,?)", users)
    cur.executemany("INSERT INTO orders VALUES (?,?,?,?)", orders)
    conn.commit()
    conn.close()


def simulate_sleep(value):
    """Honour SLEEP(n) / pg_sleep(n) in input, capped at 10 seconds."""
    m = re.search(r"(?:pg_)?SLEEP\((\d+)\)", value or "", re.IGNORECASE)
    if m:
        time.sleep(min(int(m.group(1)), 10))


def run_query(sql, params=()):
    """Rows on success, or the leaked error text."""
    try:
        return get_db().execute(sql, params).fetchall(), None
    except sqlite3.Error as e:
        # VULNERABLE: database error message rendered to the client
        return None, f"SQLite error: {e}"


# ── Shared HTML layout ──────────────────────────────────────────

_LAYOUT = """<!DOCTYPE html>
<html><head><title>VulnLab {{ title }}</title></head>
<body>
<p><a href="/">Home</a></p>
<h2>{{ title }}</h2>
{{ content|safe }}
</body></html>
"""


def page(title, content):
    return render_template_string(_LAYOUT, title=title, content=content)


def rows_table(rows, cols):
    html = "<table>"
    for row in rows:
        html += "<tr>" + "".join(f"<td>{row[c]}</td>" for c in cols) + "</tr>"
    return html + "</table>"


# ══════════════════════════════════════════════════════════════════
#  HOME: links, forms and a JS fetch for crawler discovery
# ══════════════════════════════════════════════════════════════════

@app.route("/")
def home():
    return page("Home", """
    <ul>
        <li><a href="/search?q=laptop">Search products</a></li>
        <li><a href="/items/1?view=full">Item details</a></li>
        <li><a href="/about">About</a></li>
        <li><a href="/static/logo.png">Logo</a></li>
        <li><a href="https://example.org/elsewhere?x=1">Elsewhere</a></li>
    </ul>

    <form action="/search" method="GET">
        <input type="text" name="q" value="mouse">
        <button type="submit">Search</button>
    </form>

    <form action="/submit" method="POST">
        <input type="hidden" name="csrf_token" value="static-token">
        <input type="text" name="comment" value="nice">
        <select name="product"><option value="1" selected>laptop</option><option value="2">keyboard</option></select>
        <button type="submit">Send</button>
    </form>

    <div id="api"></div>
    <script>
    fetch('/api/data?id=1').then(r => r.json()).then(d => {
        document.getElementById('api').textContent = JSON.stringify(d);
    });
    fetch('/api/post', {method: 'POST', headers: {'Content-Type': 'application/json'},
                        body: JSON.stringify({name: 'laptop', limit: 5})});
    </script>
    """)


@app.route("/about")
def about():
    return page("About", "<p>Deliberately vulnerable application for sqlscanner testing.</p>")


# ══════════════════════════════════════════════════════════════════
#  Query parameter: string context
# ══════════════════════════════════════════════════════════════════

@app.route("/search")
def search():
    q = request.args.get("q", "")
    simulate_sleep(q)
    # VULNERABLE: raw string interpolation in SQL query
    rows, error = run_query(
        f"SELECT name, price FROM products WHERE name LIKE '%{q}%'")
    if error:
        return page("Search", f"<p>{error}</p>")
    if not rows:
        return page("Search", "<p>No results.</p>")
    return page("Search", rows_table(rows, ("name", "price")))


# ══════════════════════════════════════════════════════════════════
#  Path segment: numeric context
# ══════════════════════════════════════════════════════════════════

@app.route("/items/<item_id>")
def item(item_id):
    simulate_sleep(item_id)
    # VULNERABLE: path segment concatenated into a numeric comparison
    rows, error = run_query(
        f"SELECT name, category, price, description FROM products WHERE id = {item_id}")
    if error:
        return page("Item", f"<p>{error}</p>")
    if not rows:
        return page("Item", "<p>No item.</p>")
    return page("Item", rows_table(rows, ("name", "category", "price", "description")))


# ══════════════════════════════════════════════════════════════════
#  POST form with an anti-CSRF field
# ══════════════════════════════════════════════════════════════════

@app.route("/submit", methods=["POST"])
def submit():
    comment = request.form.get("comment", "")
    product = request.form.get("product", "1")
    simulate_sleep(comment)
    # VULNERABLE: form field interpolated into the lookup
    rows, error = run_query(
        f"SELECT name FROM products WHERE id = ? AND name != '{comment}'", (product,))
    if error:
        return page("Submit", f"<p>{error}</p>")
    return page("Submit", f"<p>Thanks, {len(rows)} product(s) matched.</p>")


# ══════════════════════════════════════════════════════════════════
#  JSON API endpoints (fetched by the home page script)
# ══════════════════════════════════════════════════════════════════

@app.route("/api/data")
def api_data():
    item_id = request.args.get("id", "1")
    simulate_sleep(item_id)
    rows, error = run_query(f"SELECT id, name, price FROM products WHERE id = '{item_id}'")
    if error:
        return jsonify({"error": error}), 500
    return jsonify({"items": [dict(r) for r in rows]})


@app.route("/api/post", methods=["POST"])
def api_post():
    body = request.get_json(silent=True) or {}
    name = str(body.get("name", ""))
    simulate_sleep(name)
    rows, error = run_query(f"SELECT id, name, price FROM products WHERE name = '{name}'")
    if error:
        return jsonify({"error": error}), 500
    return jsonify({"items": [dict(r) for r in rows]})


# ══════════════════════════════════════════════════════════════════
#  Authentication and a session-protected page
# ══════════════════════════════════════════════════════════════════

@app.route("/auth/login-form", methods=["GET", "POST"])
def login_form():
    if request.method == "POST":
        user = request.form.get("username", "")
        if USERS.get(user) == request.form.get("password"):
            session["user"] = user
            return redirect("/account")
        return page("Login", "<p>Invalid credentials.</p>"), 401
    return page("Login", """
    <form action="/auth/login-form" method="POST">
        <input type="text" name="username" value="">
        <input type="password" name="password" value="">
        <button type="submit">Login</button>
    </form>
    """)


@app.route("/auth/login-json", methods=["POST"])
def login_json():
    body = request.get_json(silent=True) or {}
    user = str(body.get("username", ""))
    if USERS.get(user) == body.get("password"):
        session["user"] = user
        return jsonify({"ok": True, "user": user})
    return jsonify({"ok": False}), 401


@app.route("/account")
def account():
    user = session.get("user")
    if not user:
        return redirect("/auth/login-form")
    order = request.args.get("order", "")
    if not order:
        return page("Orders", f"""
        <p>Signed in as {user}.</p>
        <form action="/account" method="GET">
            <input type="text" name="order" value="1">
            <button type="submit">Show order</button>
        </form>
        """)
    simulate_sleep(order)
    # VULNERABLE: order id concatenated after the bound user filter
    rows, error = run_query(
        f"SELECT id, item, total FROM orders WHERE user = ? AND id = {order}", (user,))
    if error:
        return page("Orders", f"<p>{error}</p>")
    return page("Orders", rows_table(rows, ("id", "item", "total")) if rows else "<p>No order.</p>")


if __name__ == "__main__":
    init_db()
    app.run(host="127.0.0.1", port=5000, debug=False)
