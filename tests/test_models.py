"""Tests for wire message models."""

import pytest
from pydantic import ValidationError

from transfer.models import FileChunk, FileMetadata, MessageTag, TransferState, percent


class TestPercent:
    """Tests for percent()."""

    @pytest.mark.parametrize("done, total, expected", [
        (1, 3, 33),
        (2, 3, 67),
        (1, 8, 13),
        (3, 3, 100),
        (0, 5, 0),
        (0, 0, 0),
    ])
    def test_rounds_half_up(self, done: int, total: int, expected: int) -> None:
        assert percent(done, total) == expected


class TestFileMetadata:
    """Tests for FileMetadata."""

    def test_parses_peer_field_names(self) -> None:
        metadata = FileMetadata.model_validate(
            {"type": MessageTag.FILE_METADATA, "name": "a.png", "size": 10, "fileType": "image/png"}
        )

        assert metadata.mime_type == "image/png"
        assert metadata.size == 10

    def test_defaults_for_missing_fields(self) -> None:
        metadata = FileMetadata.model_validate({"type": MessageTag.FILE_METADATA})

        assert metadata.name == "unknown"
        assert metadata.mime_type == ""

    def test_negative_size_rejected(self) -> None:
        with pytest.raises(ValidationError):
            FileMetadata.model_validate({"name": "a", "size": -1})


class TestFileChunk:
    """Tests for FileChunk."""

    def test_missing_data_is_none(self) -> None:
        chunk = FileChunk.model_validate({"chunkIndex": 2, "totalChunks": 3})

        assert chunk.data is None
        assert chunk.chunk_index == 2

    @pytest.mark.parametrize("fields", [
        {"chunkIndex": -1, "totalChunks": 3},
        {"chunkIndex": 0, "totalChunks": 0},
        {"totalChunks": 3},
    ])
    def test_invalid_counters_rejected(self, fields: dict) -> None:
        with pytest.raises(ValidationError):
            FileChunk.model_validate(fields)


class TestTransferState:
    """Tests for TransferState defaults."""

    def test_starts_idle(self) -> None:
        state = TransferState()

        assert state.phase == "idle"
        assert state.progress_percent == 0
        assert state.error_message is None
