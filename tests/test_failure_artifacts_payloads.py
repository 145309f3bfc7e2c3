from __future__ import annotations

from dataclasses import dataclass

import pytest

from failcapture.capture.payloads import to_json_payload


def test_payload_is_deep_copied() -> None:
    source = {"elements": [{"value": "x"}]}
    out = to_json_payload(source)
    out["elements"][0]["value"] = None
    assert source["elements"][0]["value"] == "x"


def test_non_json_values_are_rejected() -> None:
    with pytest.raises(TypeError, match="snapshot"):
        to_json_payload({"screenshot": b"\x89PNG"}, name="snapshot")
    with pytest.raises(TypeError):
        to_json_payload({"score": float("nan")})


def test_dataclass_and_to_dict_payloads() -> None:
    @dataclass
    class Diagnostics:
        confidence: float
        reasons: list

    class Metadata:
        def to_dict(self):
            return {"attempt": 2}

    assert to_json_payload(Diagnostics(0.5, ["timeout"])) == {"confidence": 0.5, "reasons": ["timeout"]}
    assert to_json_payload(Metadata()) == {"attempt": 2}
    assert to_json_payload(None) is None
