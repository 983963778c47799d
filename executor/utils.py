import logging

from flask import current_app


def logger():
    try:
        return current_app.logger
    except RuntimeError:
        return logging.getLogger('gunicorn.error')


def short_id(container_id: str) -> str:
    return (container_id or '')[:12]
