#!/usr/bin/env python3
"""Web viewer for project memory - decisions and progress in the browser."""

from __future__ import annotations

from flask import Flask, render_template_string, request

from config import Config
from store import StructuredStore

app = Flask(__name__)
ITEMS_PER_PAGE = 10

_store: StructuredStore | None = None


def get_store() -> StructuredStore:
    global _store
    if _store is None:
        _store = StructuredStore(Config().sqlite_path)
    return _store


def get_page_links(current: int, total: int) -> list:
    """Generate smart pagination links with ellipsis for gaps."""
    if total <= 7:
        return list(range(1, total + 1))

    links = []
    for p in range(1, total + 1):
        show_page = (
            p <= 3  # First 3 pages
            or p >= total - 2  # Last 3 pages
            or abs(p - current) <= 1  # Pages around current
        )
        if show_page:
            links.append(p)
        elif links[-1] != "...":
            links.append("...")
    return links


HTML = """
<!DOCTYPE html>
<html>
<head>
    <title>DevAssist Memory - {{ project }}</title>
    <style>
        body { font-family: system-ui; max-width: 900px; margin: 0 auto; padding: 20px; background: #1a1a2e; color: #eee; }
        h1 { color: #00d9ff; }
        h2 { color: #00d9ff; font-size: 18px; margin-top: 30px; }
        .header { display: flex; justify-content: space-between; align-items: center; margin-bottom: 20px; flex-wrap: wrap; gap: 10px; }
        .projects a { color: #00d9ff; margin-right: 10px; }
        .pagination { display: flex; gap: 6px; align-items: center; flex-wrap: wrap; }
        .pagination a, .pagination span { padding: 6px 12px; background: #0f3460; color: #00d9ff; text-decoration: none; border-radius: 5px; display: inline-block; }
        .pagination a.disabled { color: #666; pointer-events: none; }
        .pagination span.ellipsis { color: #888; background: transparent; }
        .pagination span.current { background: #00d9ff; color: #1a1a2e; font-weight: bold; }
        .item { background: #16213e; padding: 15px; margin: 10px 0; border-radius: 8px; border-left: 4px solid #00d9ff; }
        .status { display: inline-block; padding: 2px 8px; border-radius: 4px; font-size: 12px; font-weight: bold; }
        .not_started { background: #7f8c8d; }
        .in_progress { background: #4a90d9; }
        .testing { background: #f39c12; }
        .completed { background: #2ecc71; }
        .blocked { background: #e74c3c; }
        .meta { color: #888; font-size: 12px; margin-top: 8px; }
    </style>
</head>
<body>
    <div class="header">
        <h1>{{ project }}</h1>
        <div class="pagination">
            {% if page > 1 %}
            <a href="?project={{ project }}&page={{ page-1 }}">← Prev</a>
            {% else %}
            <a class="disabled">← Prev</a>
            {% endif %}
            {% for p in page_links %}
            {% if p == "..." %}
            <span class="ellipsis">...</span>
            {% elif p == page %}
            <span class="current">{{ p }}</span>
            {% else %}
            <a href="?project={{ project }}&page={{ p }}">{{ p }}</a>
            {% endif %}
            {% endfor %}
            {% if page < total_pages %}
            <a href="?project={{ project }}&page={{ page+1 }}">Next →</a>
            {% else %}
            <a class="disabled">Next →</a>
            {% endif %}
        </div>
    </div>
    <div class="projects">
        {% for p in projects %}<a href="?project={{ p.name }}">{{ p.name }}</a>{% endfor %}
    </div>

    <h2>Progress</h2>
    {% for m in progress %}
    <div class="item">
        <span class="status {{ m.status }}">{{ m.status }}</span> <strong>{{ m.milestone }}</strong>
        {% if m.notes %}<p>{{ m.notes }}</p>{% endif %}
        {% if m.blockers %}<p>Blockers: {{ m.blockers|join(", ") }}</p>{% endif %}
        <div class="meta">Updated {{ m.updated_at[:19] }}</div>
    </div>
    {% else %}
    <p>No milestones yet.</p>
    {% endfor %}

    <h2>Decisions ({{ total_decisions }})</h2>
    {% for d in decisions %}
    <div class="item">
        <p><strong>{{ d.decision }}</strong></p>
        {% if d.context %}<p>{{ d.context }}</p>{% endif %}
        {% if d.alternatives %}<p>Alternatives: {{ d.alternatives|join(", ") }}</p>{% endif %}
        <div class="meta">{% if d.impact %}Impact: {{ d.impact }} | {% endif %}{{ d.timestamp[:19] }}</div>
    </div>
    {% else %}
    <p>No decisions yet.</p>
    {% endfor %}
</body>
</html>
"""


@app.route("/")
def index():
    store = get_store()
    projects = store.list_projects()
    name = request.args.get("project") or Config().project_name
    project = next((p for p in projects if p["name"] == name), None)

    all_decisions, progress = [], []
    if project is not None:
        all_decisions = store.get_decisions(project["id"], limit=10_000)
        progress = store.get_progress(project["id"], limit=100)

    total = len(all_decisions)
    page = max(1, int(request.args.get("page", 1)))
    start = (page - 1) * ITEMS_PER_PAGE
    total_pages = max(1, (total + ITEMS_PER_PAGE - 1) // ITEMS_PER_PAGE)

    return render_template_string(
        HTML,
        project=name,
        projects=projects,
        progress=progress,
        decisions=all_decisions[start : start + ITEMS_PER_PAGE],
        total_decisions=total,
        page=page,
        total_pages=total_pages,
        page_links=get_page_links(page, total_pages),
    )


if __name__ == "__main__":
    print("Open http://localhost:5000 in your browser")
    app.run(port=5000)
