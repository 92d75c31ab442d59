import os
import sys
import json
import sqlite3
from typing import Any, Dict

import pytz
from dotenv import load_dotenv
from flask import Flask, jsonify, request

# Load environment variables from .env file before the data root is resolved
load_dotenv()

from database import get_db_connection, init_db
from data_paths import ensure_data_root, settings_path
from services.insights import get_insights_engine
from services.periods import InvalidRangeError
from services.snapshot import DataUnavailableError

# --- App Initialization ---
DEFAULT_PORT = 5003

app = Flask(__name__)
app.config['JSON_SORT_KEYS'] = False

_db_bootstrapped = False

INSIGHT_QUERY_PARAMS = (
    'range',
    'compare',
    'start_date',
    'end_date',
    'compare_start_date',
    'compare_end_date',
)


@app.before_request
def _ensure_database_initialized():
    """Guarantee the SQLite schema exists before serving any request."""
    global _db_bootstrapped
    if _db_bootstrapped:
        return
    try:
        init_db()
        _db_bootstrapped = True
    except Exception as exc:  # pragma: no cover
        app.logger.exception("Failed to initialize database before request: %s", exc)


def read_json_file(file_path):
    if not os.path.exists(file_path) or os.path.getsize(file_path) == 0:
        return {}
    with open(file_path, 'r') as f:
        try:
            return json.load(f)
        except json.JSONDecodeError:
            app.logger.error(f"JSONDecodeError for {file_path}")
            return {}


def _load_settings_dict() -> Dict[str, Any]:
    settings_blob = read_json_file(settings_path())
    return settings_blob if isinstance(settings_blob, dict) else {}


def _resolve_timezone_setting() -> str:
    settings = _load_settings_dict()
    tz_value = (settings.get('timezone') or 'UTC').strip() or 'UTC'
    try:
        pytz.timezone(tz_value)
    except pytz.UnknownTimeZoneError:
        app.logger.warning("Ignoring unknown timezone setting '%s'", tz_value)
        tz_value = 'UTC'
    return tz_value


def _error_response(message: str, status: int):
    return jsonify({'success': False, 'message': message}), status


def _run_insight(insight_id: str, params: Dict[str, Any]) -> Dict[str, Any]:
    engine = get_insights_engine()
    conn = get_db_connection()
    try:
        return engine.run_insight(conn, insight_id, params, timezone_name=_resolve_timezone_setting())
    finally:
        conn.close()


def _insight_response(insight_id: str):
    params = {name: request.args.get(name) for name in INSIGHT_QUERY_PARAMS}
    try:
        result = _run_insight(insight_id, params)
    except InvalidRangeError as exc:
        app.logger.warning("Rejected %s insights request: %s", insight_id, exc)
        return _error_response(str(exc), 400)
    except DataUnavailableError as exc:
        app.logger.error("Records unavailable for %s insights: %s", insight_id, exc)
        return _error_response('Failed to load records.', 500)
    except Exception as exc:  # pragma: no cover
        app.logger.exception("Failed to compute %s insights: %s", insight_id, exc)
        return _error_response('Failed to generate insights.', 500)
    return jsonify({'success': True, **result})


@app.route('/api/sales/insights', methods=['GET'])
def api_sales_insights():
    return _insight_response('sales')


@app.route('/api/planting/insights', methods=['GET'])
def api_planting_insights():
    return _insight_response('planting')


@app.route('/api/harvest/insights', methods=['GET'])
@app.route('/api/harvests/insights', methods=['GET'])
def api_harvest_insights():
    return _insight_response('harvest')


@app.route('/api/insights', methods=['GET'])
def api_list_insights():
    try:
        definitions = get_insights_engine().list_insight_definitions()
        return jsonify({'success': True, 'insights': definitions})
    except Exception as exc:  # pragma: no cover
        app.logger.exception("Failed to list insight definitions: %s", exc)
        return _error_response('Failed to load insight definitions.', 500)


@app.route('/api/insights/run', methods=['POST'])
def api_run_insight():
    payload = request.get_json(force=True, silent=True) or {}
    insight_id = payload.get('insightId') or payload.get('insight_id')
    if not insight_id:
        return _error_response('insightId is required.', 400)
    params = payload.get('params') or {}
    if not isinstance(params, dict):
        return _error_response('params must be an object.', 400)
    try:
        result = _run_insight(insight_id, params)
        return jsonify({'success': True, 'insight': result})
    except KeyError as exc:
        return _error_response(str(exc.args[0]) if exc.args else 'Unknown insight.', 404)
    except InvalidRangeError as exc:
        app.logger.warning("Rejected %s insights request: %s", insight_id, exc)
        return _error_response(str(exc), 400)
    except DataUnavailableError as exc:
        app.logger.error("Records unavailable for %s insights: %s", insight_id, exc)
        return _error_response('Failed to load records.', 500)
    except Exception as exc:  # pragma: no cover
        app.logger.exception("Failed to compute %s insights: %s", insight_id, exc)
        return _error_response('Failed to generate insights.', 500)


@app.route('/api/health', methods=['GET'])
def api_health():
    conn = get_db_connection()
    try:
        conn.execute("SELECT 1")
        return jsonify({'status': 'ok'})
    except sqlite3.Error as e:
        app.logger.error(f"DB error health check: {e}")
        return jsonify({'status': 'error'}), 500
    finally:
        conn.close()


def main():
    host = os.environ.get('CROPFLOW_HOST', '0.0.0.0')
    try:
        port = int(os.environ.get('CROPFLOW_PORT', DEFAULT_PORT))
    except ValueError:
        print(f"Invalid CROPFLOW_PORT; using {DEFAULT_PORT}.")
        port = DEFAULT_PORT
    ensure_data_root()
    print(f"Starting Cropflow insights API on {host}:{port}.")
    app.run(host=host, port=port, debug=False)


if __name__ == '__main__':
    init_db()
    sys.exit(main())
