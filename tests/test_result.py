"""Tests for result/status reconciliation."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from agent_pipelines.errors import (
    MissingInputError,
    ResultInvalidError,
    ResultMissingError,
    SchemaInvalidError,
    StatusInvalidError,
    WriteFailureError,
)
from agent_pipelines.result import (
    ArtifactInfo,
    Result,
    SignalInfo,
    Source,
    Status,
    WorkInfo,
    from_status,
    load,
    normalize,
    normalize_files,
    write,
)


def _write_json(path: Path, payload: object) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload), encoding="utf-8")


class TestNormalize:
    """Tests for normalize()."""

    def test_defaults(self) -> None:
        normalized = normalize(Result())
        assert normalized.signals.risk == "low"
        assert normalized.work.items_completed == ()
        assert normalized.work.files_touched == ()
        assert normalized.artifacts.outputs == ()
        assert normalized.artifacts.paths == ()
        assert normalized.errors == ()

    def test_blank_risk_defaults_to_low(self) -> None:
        normalized = normalize(Result(signals=SignalInfo(risk="   ")))
        assert normalized.signals.risk == "low"

    def test_risk_is_trimmed_not_replaced(self) -> None:
        normalized = normalize(Result(signals=SignalInfo(risk=" high ")))
        assert normalized.signals.risk == "high"

    def test_preserves_existing_values(self) -> None:
        original = Result(
            summary="did things",
            work=WorkInfo(items_completed=["a", "b"], files_touched=["x.py"]),
            artifacts=ArtifactInfo(outputs=["report"], paths=["out/report.md"]),
            signals=SignalInfo(plateau_suspected=True, risk="medium", notes="n"),
            errors=["boom"],
            decision="continue",
            reason="more to do",
        )
        normalized = normalize(original)
        assert normalized == original
        assert normalized.work.items_completed == ("a", "b")

    def test_idempotent(self) -> None:
        once = normalize(Result(errors=None, signals=SignalInfo(risk="")))
        assert normalize(once) == once

    def test_does_not_mutate_input(self) -> None:
        original = Result()
        normalize(original)
        assert original.errors is None
        assert original.signals.risk == ""


class TestFromStatus:
    """Tests for legacy status conversion."""

    def test_conversion(self) -> None:
        status = Status(
            decision="stop",
            reason="done",
            summary="wrapped",
            work=WorkInfo(items_completed=["item"], files_touched=["file.go"]),
            errors=["boom"],
        )
        normalized = from_status(status)

        assert normalized.summary == "wrapped"
        assert normalized.decision == "stop"
        assert normalized.reason == "done"
        assert normalized.signals.plateau_suspected is False
        assert normalized.signals.risk == "low"
        assert normalized.signals.notes == "done"
        assert normalized.errors == ("boom",)
        assert normalized.work.items_completed == ("item",)
        assert normalized.artifacts.outputs == ()
        assert normalized.artifacts.paths == ()

    def test_empty_status(self) -> None:
        normalized = from_status(Status())
        assert normalized.work.items_completed == ()
        assert normalized.errors == ()
        assert normalized.signals.notes == ""


class TestLoad:
    """Tests for load() precedence."""

    def test_prefers_result_over_status(self, tmp_path: Path) -> None:
        result_path = tmp_path / "result.json"
        status_path = tmp_path / "status.json"
        _write_json(
            result_path,
            {
                "summary": "from result",
                "signals": {"plateau_suspected": True, "risk": "high", "notes": "note"},
            },
        )
        _write_json(status_path, {"summary": "from status", "decision": "stop"})

        result, source = load(result_path, status_path)

        assert source is Source.RESULT
        assert source == "result"
        assert result.summary == "from result"
        assert result.decision == ""
        assert result.signals.plateau_suspected is True
        assert result.work.items_completed == ()

    def test_falls_back_to_status_when_result_absent(self, tmp_path: Path) -> None:
        status_path = tmp_path / "status.json"
        _write_json(status_path, {"decision": "continue", "reason": "ok", "summary": "s"})

        result, source = load(tmp_path / "result.json", status_path)

        assert source is Source.STATUS
        assert result.decision == "continue"
        assert result.signals.notes == "ok"

    def test_blank_result_path_uses_status(self, tmp_path: Path) -> None:
        status_path = tmp_path / "status.json"
        _write_json(status_path, {"summary": "legacy"})

        result, source = load("   ", status_path)
        assert source is Source.STATUS
        assert result.summary == "legacy"

        result, source = load(None, str(status_path))
        assert source is Source.STATUS

    def test_corrupt_result_does_not_fall_back(self, tmp_path: Path) -> None:
        result_path = tmp_path / "result.json"
        status_path = tmp_path / "status.json"
        result_path.write_text("{bad", encoding="utf-8")
        _write_json(status_path, {"decision": "continue"})

        with pytest.raises(ResultInvalidError) as exc_info:
            load(result_path, status_path)

        assert isinstance(exc_info.value, SchemaInvalidError)
        assert exc_info.value.path == result_path

    @pytest.mark.parametrize(
        "payload",
        [
            [],
            "string",
            {"summary": 5},
            {"work": []},
            {"work": {"items_completed": "a"}},
            {"work": {"items_completed": ["a", 1]}},
            {"signals": {"plateau_suspected": "yes"}},
            {"errors": {"a": 1}},
        ],
    )
    def test_wrong_shapes_are_invalid(self, tmp_path: Path, payload: object) -> None:
        result_path = tmp_path / "result.json"
        _write_json(result_path, payload)
        _write_json(tmp_path / "status.json", {"decision": "stop"})

        with pytest.raises(ResultInvalidError):
            load(result_path, tmp_path / "status.json")

    def test_null_payload_is_empty_result(self, tmp_path: Path) -> None:
        result_path = tmp_path / "result.json"
        result_path.write_text("null\n", encoding="utf-8")
        _write_json(tmp_path / "status.json", {"decision": "stop"})

        result, source = load(result_path, tmp_path / "status.json")

        assert source is Source.RESULT
        assert result == normalize(Result())
        assert result.decision == ""

    def test_null_status_is_empty_result(self, tmp_path: Path) -> None:
        status_path = tmp_path / "status.json"
        status_path.write_text("null", encoding="utf-8")

        result, source = load(tmp_path / "result.json", status_path)

        assert source is Source.STATUS
        assert result.signals.risk == "low"

    def test_nulls_and_unknown_keys_are_tolerated(self, tmp_path: Path) -> None:
        result_path = tmp_path / "result.json"
        _write_json(
            result_path,
            {
                "summary": None,
                "work": None,
                "errors": None,
                "signals": {"risk": None},
                "extra": {"anything": True},
            },
        )

        result, source = load(result_path, "")

        assert source is Source.RESULT
        assert result.summary == ""
        assert result.errors == ()
        assert result.signals.risk == "low"

    def test_corrupt_status(self, tmp_path: Path) -> None:
        status_path = tmp_path / "status.json"
        status_path.write_text("not json", encoding="utf-8")

        with pytest.raises(StatusInvalidError):
            load(tmp_path / "result.json", status_path)

    def test_status_with_wrong_shape(self, tmp_path: Path) -> None:
        status_path = tmp_path / "status.json"
        _write_json(status_path, {"decision": ["stop"]})

        with pytest.raises(StatusInvalidError):
            load(tmp_path / "result.json", status_path)

    def test_both_missing(self, tmp_path: Path) -> None:
        with pytest.raises(ResultMissingError) as exc_info:
            load(tmp_path / "result.json", tmp_path / "status.json")
        assert isinstance(exc_info.value, MissingInputError)

    def test_blank_status_path_is_missing(self, tmp_path: Path) -> None:
        with pytest.raises(ResultMissingError):
            load(tmp_path / "result.json", "")

    def test_unreadable_result_is_fatal(self, tmp_path: Path) -> None:
        result_path = tmp_path / "result.json"
        result_path.mkdir()
        _write_json(tmp_path / "status.json", {"decision": "continue"})

        with pytest.raises(ResultInvalidError):
            load(result_path, tmp_path / "status.json")


class TestNormalizeFiles:
    """Tests for normalize_files() migrate-on-read."""

    def test_rewrites_result_with_defaults(self, tmp_path: Path) -> None:
        result_path = tmp_path / "result.json"
        status_path = tmp_path / "status.json"
        _write_json(result_path, {"summary": "from result"})

        result, source = normalize_files(result_path, status_path)

        assert source is Source.RESULT
        assert result.summary == "from result"
        reloaded = json.loads(result_path.read_text(encoding="utf-8"))
        assert reloaded["work"] == {"items_completed": [], "files_touched": []}
        assert reloaded["artifacts"] == {"outputs": [], "paths": []}
        assert reloaded["signals"]["risk"] == "low"
        assert reloaded["errors"] == []

    def test_migrates_status_to_result(self, tmp_path: Path) -> None:
        result_path = tmp_path / "result.json"
        status_path = tmp_path / "status.json"
        _write_json(
            status_path,
            {
                "decision": "continue",
                "reason": "ok",
                "summary": "from status",
                "work": {"items_completed": ["a"], "files_touched": ["b.go"]},
            },
        )

        result, source = normalize_files(result_path, status_path)

        assert source is Source.STATUS
        assert result.summary == "from status"
        assert result.signals.notes == "ok"
        assert result_path.exists()

        migrated, migrated_source = load(result_path, status_path)
        assert migrated_source is Source.RESULT
        assert migrated == result

    def test_without_result_path_does_not_write(self, tmp_path: Path) -> None:
        status_path = tmp_path / "status.json"
        _write_json(status_path, {"summary": "s"})

        _, source = normalize_files("", status_path)

        assert source is Source.STATUS
        assert sorted(p.name for p in tmp_path.iterdir()) == ["status.json"]

    def test_rejects_invalid_result(self, tmp_path: Path) -> None:
        result_path = tmp_path / "result.json"
        result_path.write_text("{bad", encoding="utf-8")
        _write_json(tmp_path / "status.json", {"decision": "continue"})

        with pytest.raises(ResultInvalidError):
            normalize_files(result_path, tmp_path / "status.json")
        assert result_path.read_text(encoding="utf-8") == "{bad"

    def test_missing(self, tmp_path: Path) -> None:
        with pytest.raises(ResultMissingError):
            normalize_files(tmp_path / "result.json", tmp_path / "status.json")
        assert not (tmp_path / "result.json").exists()


class TestWrite:
    """Tests for write()."""

    def test_canonical_layout(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "dir" / "result.json"
        write(path, Result(summary="s", decision="stop", reason="done"))

        text = path.read_text(encoding="utf-8")
        assert text.endswith("}\n")
        assert '\n  "summary": "s",' in text
        assert list(json.loads(text).keys()) == [
            "summary",
            "work",
            "artifacts",
            "signals",
            "errors",
            "decision",
            "reason",
        ]

    def test_omits_empty_decision_and_reason(self, tmp_path: Path) -> None:
        path = tmp_path / "result.json"
        write(path, Result(summary="s"))

        payload = json.loads(path.read_text(encoding="utf-8"))
        assert "decision" not in payload
        assert "reason" not in payload
        assert payload["errors"] == []

    def test_leaves_no_temp_files(self, tmp_path: Path) -> None:
        write(tmp_path / "result.json", Result())
        assert [p.name for p in tmp_path.iterdir()] == ["result.json"]

    def test_blank_path(self) -> None:
        with pytest.raises(WriteFailureError):
            write("  ", Result())

    def test_unwritable_directory(self, tmp_path: Path) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("file, not a dir", encoding="utf-8")

        with pytest.raises(WriteFailureError):
            write(blocker / "result.json", Result())
