from __future__ import annotations

from flask import jsonify, request

DEFAULT_PER_PAGE = 15
MAX_PER_PAGE = 100


def ok(data=None, message: str = "", status: int = 200):
    payload = {"success": True, "message": message or "OK"}
    if data is not None:
        payload["data"] = data
    return jsonify(payload), status


def page_args() -> tuple[int, int]:
    try:
        page = int(request.args.get("page") or 1)
    except ValueError:
        page = 1
    try:
        per_page = int(request.args.get("per_page") or DEFAULT_PER_PAGE)
    except ValueError:
        per_page = DEFAULT_PER_PAGE
    return max(1, page), max(1, min(per_page, MAX_PER_PAGE))


def paginate(query, serialize, *, page: int | None = None, per_page: int | None = None) -> dict:
    if page is None or per_page is None:
        page, per_page = page_args()
    total = query.order_by(None).count()
    rows = query.limit(per_page).offset((page - 1) * per_page).all()
    return {
        "items": [serialize(row) for row in rows],
        "pagination": {
            "page": page,
            "per_page": per_page,
            "total": total,
            "pages": (total + per_page - 1) // per_page,
        },
    }


def json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}
