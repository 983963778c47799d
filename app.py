import os
import atexit
import logging
import secrets
from flask import Flask, request, jsonify
from pydantic import ValidationError
from executor.config import SANDBOX_TOKEN, LOG_DIR
from executor.constant import Language
from executor.exception import UnsupportedLanguageError
from executor.meta import AggregateResult, ExecuteCodeRequest
from executor.service import SandboxService

LOG_DIR.mkdir(parents=True, exist_ok=True)
logging.basicConfig(
    filename=str(LOG_DIR / "sandbox.log"),
    level=logging.DEBUG,
)
app = Flask(__name__)
if __name__ != "__main__":
    # let flask app use gunicorn's logger
    gunicorn_logger = logging.getLogger("gunicorn.error")
    app.logger.handlers = gunicorn_logger.handlers
    app.logger.setLevel(gunicorn_logger.level)
    logging.getLogger().setLevel(gunicorn_logger.level)

    # Allow overriding log level via environment variable
    if os.getenv("SANDBOX_DEBUG", "").lower() == "true":
        app.logger.setLevel(logging.DEBUG)
        logging.getLogger().setLevel(logging.DEBUG)
logger = app.logger

# setup sandbox service
SERVICE = SandboxService(os.getenv("EXECUTOR_CONFIG"))
atexit.register(SERVICE.close)

API_PREFIX = "/api/sandbox"


def to_response(result: AggregateResult) -> dict:
    return {
        "status": "SUCCEED" if result.success else "FAILED",
        "output": [m.raw_output for m in result.per_run_metrics],
        "judgeInfo": {
            "message": "success" if result.success else "execution error",
            "memory": result.max_memory_bytes // 1024,
            "time": result.max_elapsed_millis,
        },
        "results": result.model_dump(mode="json"),
    }


def error_response(message: str, code: int):
    return jsonify({
        "status": "FAILED",
        "output": [],
        "judgeInfo": {
            "message": message,
            "memory": 0,
            "time": 0,
        },
        "results": None,
    }), code


@app.before_request
def check_token():
    if request.path == f"{API_PREFIX}/health":
        return None
    token = request.headers.get("auth", "")
    if not secrets.compare_digest(token, SANDBOX_TOKEN):
        logger.debug(f"get invalid token on {request.path}")
        return "invalid token", 401
    return None


@app.get(f"{API_PREFIX}/health")
def health():
    return "ok"


def _execute(body, language=None):
    try:
        req = ExecuteCodeRequest.model_validate(body or {})
    except ValidationError as e:
        return error_response(f"invalid request: {e.errors()[0]['msg']}",
                              400)
    try:
        result = SERVICE.execute(req, language=language)
    except UnsupportedLanguageError as e:
        return error_response(str(e), 400)
    except Exception as e:
        logger.error(f"execution failed: {e}", exc_info=True)
        return error_response(f"execution failed: {e}", 500)
    logger.debug(
        f"executed {len(result.per_run_metrics)} runs "
        f"(matched={result.output_matched})")
    return jsonify(to_response(result))


@app.post(f"{API_PREFIX}/execute")
def execute():
    return _execute(request.get_json(silent=True))


@app.post(f"{API_PREFIX}/<language>")
def execute_language(language: str):
    try:
        lang = Language[language.upper()]
    except KeyError:
        return error_response(f"unsupported language: {language}", 400)
    return _execute(request.get_json(silent=True), language=lang)


@app.post(f"{API_PREFIX}/cleanup")
def cleanup():
    try:
        summary = SERVICE.cleanup()
    except Exception as e:
        logger.error(f"cleanup failed: {e}")
        return f"cleanup failed: {e}", 500
    return (f"cleanup finished: retired {summary['retired']} warm "
            f"containers, reconciled {summary['reconciled']} leaked "
            f"containers, {summary['leaked']} still pending")


@app.get(f"{API_PREFIX}/containers/status")
def containers_status():
    return jsonify(SERVICE.status()), 200


# for local debug
# if __name__ == "__main__":
#     app.run(host="0.0.0.0", port=5000, debug=True)
