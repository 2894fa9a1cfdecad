"""REST API over the prepared-dataset cache."""

from __future__ import annotations

from dataclasses import asdict
from pathlib import Path

from flask import Blueprint, current_app, jsonify, request

from tabds.ds.dataset import Dataset
from tabds.ds.info import DatasetInfo
from tabds.ds.types import (
    DatasetError,
    DatasetNotFoundError,
    SplitNotFoundError,
    VerificationError,
)

ds_bp = Blueprint("datasets", __name__)


def _mgr():
    return current_app.config["cache_manager"]


def _int_arg(name: str, default: int) -> int:
    raw = request.args.get(name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"'{name}' must be an integer, got {raw!r}") from None
    if value < 0:
        raise ValueError(f"'{name}' must be >= 0, got {value}")
    return value


# -- error handlers ----------------------------------------------------------

@ds_bp.errorhandler(DatasetNotFoundError)
@ds_bp.errorhandler(SplitNotFoundError)
def _handle_not_found(exc):
    return jsonify({"error": str(exc)}), 404


@ds_bp.errorhandler(ValueError)
def _handle_value_error(exc):
    return jsonify({"error": str(exc)}), 400


@ds_bp.errorhandler(VerificationError)
def _handle_verification_error(exc):
    return jsonify({"error": str(exc)}), 409


@ds_bp.errorhandler(DatasetError)
def _handle_ds_error(exc):
    return jsonify({"error": str(exc)}), 500


# -- routes ------------------------------------------------------------------

@ds_bp.route("/api/datasets", methods=["GET"])
def list_datasets():
    records = _mgr().list(
        builder_name=request.args.get("builder"),
        config_name=request.args.get("config"),
    )
    return jsonify([asdict(r) for r in records])


@ds_bp.route("/api/datasets/<path:dataset_id>/verify", methods=["POST"])
def verify_dataset(dataset_id):
    return jsonify([asdict(r) for r in _mgr().verify(dataset_id=dataset_id)])


@ds_bp.route("/api/datasets/<path:dataset_id>/info", methods=["GET"])
def dataset_info(dataset_id):
    record = _mgr().get(dataset_id)
    return jsonify(DatasetInfo.from_directory(record.cache_dir).to_dict())


@ds_bp.route("/api/datasets/<path:dataset_id>/rows", methods=["GET"])
def dataset_rows(dataset_id):
    record = _mgr().get(dataset_id)
    split = request.args.get("split", "train")
    offset = _int_arg("offset", 0)
    length = min(_int_arg("length", 100), current_app.config["ROWS_MAX_LENGTH"])

    info = DatasetInfo.from_directory(Path(record.cache_dir))
    ds = Dataset.from_split_dir(record.cache_dir, split, info)
    stop = min(offset + length, len(ds))
    rows = ds[offset:stop] if offset < stop else {name: [] for name in ds.column_names}
    return jsonify({
        "dataset_id": dataset_id,
        "split": split,
        "features": ds.features.to_dict(),
        "num_rows_total": len(ds),
        "offset": offset,
        "rows": [
            {"row_idx": offset + i, "row": {name: rows[name][i] for name in ds.column_names}}
            for i in range(max(stop - offset, 0))
        ],
    })


@ds_bp.route("/api/datasets/<path:dataset_id>", methods=["GET"])
def get_dataset(dataset_id):
    return jsonify(asdict(_mgr().get(dataset_id)))


@ds_bp.route("/api/datasets/<path:dataset_id>", methods=["DELETE"])
def delete_dataset(dataset_id):
    _mgr().delete(dataset_id)
    return jsonify({"deleted": dataset_id})


@ds_bp.route("/api/verify", methods=["POST"])
def verify_all():
    return jsonify([asdict(r) for r in _mgr().verify()])


@ds_bp.route("/api/rebuild-cache", methods=["POST"])
def rebuild_cache():
    return jsonify({"rebuilt": _mgr().rebuild_cache()})
