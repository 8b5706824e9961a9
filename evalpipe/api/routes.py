from flask import current_app, jsonify, request
from werkzeug.exceptions import HTTPException

from ..errors import EvaluationPipelineError, InvalidPayload
from ..pipeline import get_pipeline
from ..queue.jobs import JobKind, parse_kind
from ..utils.decorators import admin_key_required
from . import bp


@bp.errorhandler(EvaluationPipelineError)
def handle_pipeline_error(exc):
    if exc.http_status >= 500:
        current_app.logger.warning("%s: %s", exc.code, exc.message)
    return jsonify(exc.to_dict()), exc.http_status


@bp.errorhandler(HTTPException)
def handle_http_error(exc):
    return jsonify({"error": exc.description, "code": exc.name.lower().replace(" ", "_")}), exc.code


def _kind_arg(value, default=None):
    if value is None:
        if default is None:
            raise InvalidPayload("kind is required")
        return default
    try:
        return parse_kind(value)
    except ValueError as exc:
        raise InvalidPayload(str(exc)) from exc


@bp.post("/queue/evaluate")
def queue_evaluate():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise InvalidPayload("request body must be a JSON object")
    kind = _kind_arg(data.get("kind"))
    context = data.get("context")
    if context is not None and not isinstance(context, dict):
        raise InvalidPayload("context must be an object")
    handle = get_pipeline().producer.enqueue_entity(
        kind, data.get("entityId"), content=data.get("content"), context=context)
    return jsonify(handle.to_dict()), 202


@bp.post("/queue/evaluate/bulk")
@admin_key_required
def queue_evaluate_bulk():
    data = request.get_json(silent=True) or {}
    activity_id = request.args.get("activityId") or data.get("activityId")
    limit = request.args.get("limit") or data.get("limit")
    kind = _kind_arg(request.args.get("kind") or data.get("kind"), JobKind.QUESTION_EVALUATION)
    report = get_pipeline().backfill.backfill(activity_id=activity_id, limit=limit, kind=kind)
    return jsonify(report.to_dict())


@bp.get("/queue/evaluate/bulk")
@admin_key_required
def queue_evaluate_bulk_summary():
    kind = _kind_arg(request.args.get("kind"), JobKind.QUESTION_EVALUATION)
    summary = get_pipeline().backfill.summary(activity_id=request.args.get("activityId"), kind=kind)
    return jsonify(summary)


@bp.get("/questions/<question_id>/evaluation-status")
def question_evaluation_status(question_id):
    view = get_pipeline().tracker.read(JobKind.QUESTION_EVALUATION, question_id)
    return jsonify(view.to_dict())


@bp.get("/responses/<response_id>/evaluation-status")
def response_evaluation_status(response_id):
    view = get_pipeline().tracker.read(JobKind.RESPONSE_EVALUATION, response_id)
    return jsonify(view.to_dict())


@bp.get("/health")
def health():
    body = get_pipeline().health.liveness()
    return jsonify(body), 200 if body["storeReachable"] else 503


@bp.get("/health/queue")
@admin_key_required
def health_queue():
    return jsonify(get_pipeline().health.check())
