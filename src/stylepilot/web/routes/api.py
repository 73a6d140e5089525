from __future__ import annotations

import asyncio
import binascii
import logging
from dataclasses import asdict, replace

from flask import Blueprint, current_app, jsonify, request

from pilot_llm.errors import GatewayError
from pilot_llm.types import ImageData
from stylepilot.document.stub import StubDocument
from stylepilot.events.types import ProgressEvent
from stylepilot.model.run import RefinementResult, RefinementRun
from stylepilot.model.snapshot import ElementTree
from stylepilot.runner import PilotRunner
from stylepilot.stylesheet import BlockKey, StyleDocument

logger = logging.getLogger(__name__)

api_bp = Blueprint("api", __name__)


@api_bp.after_request
def add_cors_headers(response):
    """Allow cross-origin requests to the API."""
    response.headers["Access-Control-Allow-Origin"] = "*"
    response.headers["Access-Control-Allow-Headers"] = "Content-Type"
    response.headers["Access-Control-Allow-Methods"] = "GET, POST, DELETE, OPTIONS"
    return response


@api_bp.route("/refinements", methods=["OPTIONS"])
@api_bp.route("/artifacts", methods=["OPTIONS"])
def preflight():
    """Handle CORS preflight."""
    return "", 204


def _artifact_json(artifact) -> dict:
    return asdict(artifact)


def _decode_images(values) -> list[ImageData]:
    return [ImageData.from_data_uri(uri, name=f"reference-{i}") for i, uri in enumerate(values or [])]


def _optional_float(data: dict, name: str, default: float | None) -> float | None:
    value = data.get(name, default)
    if value is None:
        return None
    if isinstance(value, bool):
        raise TypeError(f"{name} must be a number")
    return float(value)


@api_bp.route("/refinements", methods=["POST"])
def create_refinement():
    """Run a refinement to completion against a client-supplied snapshot.

    The client sends the element tree, optionally the current stylesheet and a
    screenshot; the applied stylesheet comes back in the response.
    """
    data = request.get_json(silent=True)
    if not data or not str(data.get("intent", "")).strip() or "snapshot" not in data:
        return jsonify({"error": "intent and snapshot required"}), 400

    base = current_app.extensions["pilot_config"]
    try:
        config = replace(
            base,
            max_iterations=int(data.get("max_iterations", base.max_iterations)),
            quality_threshold=_optional_float(data, "quality_threshold", base.quality_threshold),
            stall_ratio=_optional_float(data, "stall_ratio", base.stall_ratio),
        )
        snapshot = ElementTree.from_dict(data["snapshot"], prefix=config.class_prefix)
        images = _decode_images(data.get("images"))
        capture = data.get("capture")
        captures = [ImageData.from_data_uri(capture, name="capture")] if capture else []
        stylesheet = StyleDocument.parse(data.get("stylesheet", ""))
        block_key = BlockKey.parse(data["block_key"]) if data.get("block_key") else None
        preference_keys = list(
            dict.fromkeys(BlockKey.parse(str(k)) for k in data.get("preference_keys") or [])
        )
        run = RefinementRun(
            max_iterations=config.max_iterations,
            quality_threshold=config.quality_threshold,
            stall_ratio=config.stall_ratio,
        )
    except (ValueError, TypeError, binascii.Error) as exc:
        return jsonify({"error": str(exc)}), 400

    # The client refreshes the capture itself; reuse it for every iteration.
    document = StubDocument(snapshot, captures=captures * config.max_iterations)
    try:
        gateway = current_app.extensions["gateway_factory"]()
    except GatewayError as exc:
        logger.error("Cannot build gateway: %s", exc)
        return jsonify({"error": str(exc)}), 500
    runner = PilotRunner(
        config,
        gateway=gateway,
        document=document,
        store=current_app.extensions["artifact_repo"],
    )

    events: list[ProgressEvent] = []
    runner.event_bus.subscribe(ProgressEvent, events.append)

    async def drive() -> tuple[RefinementResult, object]:
        try:
            kwargs = {"block_key": block_key} if block_key else {}
            if preference_keys:
                kwargs["preference_keys"] = preference_keys
            return await runner.refine(
                data["intent"],
                images,
                run,
                stylesheet=stylesheet,
                save_label=data.get("save_label"),
                **kwargs,
            )
        finally:
            await runner.aclose()

    try:
        result, artifact = asyncio.run(drive())
    except GatewayError as exc:
        return jsonify({"error": str(exc)}), 502

    body = result.to_dict()
    body["events"] = [
        {"iteration": e.iteration, "stage": str(e.stage), "message": e.message, "level": e.level}
        for e in events
    ]
    if artifact is not None:
        body["artifact"] = _artifact_json(artifact)

    if result.failure is None:
        return jsonify(body), 200
    status = 502 if isinstance(result.failure.error, GatewayError) else 500
    return jsonify(body), status


@api_bp.route("/artifacts", methods=["GET"])
def list_artifacts():
    repo = current_app.extensions["artifact_repo"]
    limit = request.args.get("limit", 100, type=int)
    offset = request.args.get("offset", 0, type=int)
    items = repo.list_artifacts(limit=limit, offset=offset)
    return jsonify({"artifacts": [_artifact_json(a) for a in items], "total": repo.count()})


@api_bp.route("/artifacts", methods=["POST"])
def create_artifact():
    data = request.get_json(silent=True)
    if not data or not str(data.get("label", "")).strip() or "css" not in data:
        return jsonify({"error": "label and css required"}), 400
    repo = current_app.extensions["artifact_repo"]
    artifact = repo.save_artifact(data["label"], data["css"], data.get("description", ""))
    return jsonify(_artifact_json(artifact)), 201


@api_bp.route("/artifacts/<artifact_id>", methods=["GET"])
def get_artifact(artifact_id: str):
    artifact = current_app.extensions["artifact_repo"].get_artifact(artifact_id)
    if artifact is None:
        return jsonify({"error": "not found"}), 404
    return jsonify(_artifact_json(artifact))


@api_bp.route("/artifacts/<artifact_id>", methods=["DELETE"])
def delete_artifact(artifact_id: str):
    if not current_app.extensions["artifact_repo"].delete_artifact(artifact_id):
        return jsonify({"error": "not found"}), 404
    return "", 204
