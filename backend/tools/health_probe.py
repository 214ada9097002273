import json

from sqlalchemy import text
from sqlalchemy.engine.url import make_url

from app import create_app
from app.extensions import db
from app.integrations.maps.factory import routing_health
from app.utils.cache_layer import cache_stats


def _safe_uri(uri: str) -> str:
    if not uri:
        return "unknown"
    try:
        return make_url(uri).render_as_string(hide_password=True)
    except Exception:
        return "unknown"


def main() -> int:
    app = create_app()
    status = 0
    with app.app_context():
        print("database:", _safe_uri(app.config.get("SQLALCHEMY_DATABASE_URI") or ""))
        try:
            with db.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            print("SELECT 1: success")
        except Exception as e:
            status = 1
            msg = str(e)
            print("SELECT 1: fail")
            if msg:
                print("error:", (msg[:300] + "...") if len(msg) > 300 else msg)
        print("routing:", json.dumps(routing_health(), sort_keys=True))
        print("cache:", json.dumps(cache_stats(), sort_keys=True))
    return status


if __name__ == "__main__":
    raise SystemExit(main())
