"""Unit tests for the frozen pydantic models."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from drive_knowledge.models.knowledge import EmbeddedChunk, KnowledgeSource, KnowledgeSourceStatus
from drive_knowledge.models.outcomes import ActionResult, AuthorizationRequired
from drive_knowledge.models.user import MicrosoftToken

NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def test_chunk_id_is_composite() -> None:
    chunk = EmbeddedChunk(
        knowledge_source_id="ks", file_id="f", chunk_index=3, file_name="a.txt",
        file_path="/a.txt", text="t", embedding=[0.1],
    )
    assert chunk.chunk_id == "ks:f:3"


def test_negative_chunk_index_rejected() -> None:
    with pytest.raises(ValidationError):
        EmbeddedChunk(
            knowledge_source_id="ks", file_id="f", chunk_index=-1, file_name="a.txt",
            file_path="/a.txt", text="t", embedding=[0.1],
        )


def test_models_are_frozen() -> None:
    source = KnowledgeSource(id="ks", name="n", source_url="/", created_by="u")
    assert source.status == KnowledgeSourceStatus.PROCESSING
    with pytest.raises(ValidationError):
        source.name = "other"


@pytest.mark.parametrize(
    ("expires_in", "expected"),
    [(timedelta(seconds=30), True), (timedelta(seconds=60), True), (timedelta(minutes=5), False)],
)
def test_token_expiry_margin(expires_in, expected) -> None:
    token = MicrosoftToken(access_token="a", expires_at=NOW + expires_in)
    assert token.expires_within(60, now=NOW) is expected


def test_payload_omits_empty_next_steps() -> None:
    assert ActionResult(result=[1], message="ok").to_payload() == {"result": [1], "message": "ok"}
    assert ActionResult(message="x", next_steps=["retry"]).to_payload()["nextSteps"] == ["retry"]


def test_authorization_required_defaults() -> None:
    required = AuthorizationRequired(auth_url="https://login.test")
    assert required.message == "User has not authorized Microsoft account."
    assert len(required.next_steps) == 2
