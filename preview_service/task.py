"""
Preview batch data model

Defines resolved sources, artifact sets, per-variant results and the batch outcome.
"""

import os
import time
from enum import Enum
from dataclasses import dataclass, field
from typing import Optional, Dict, Any, List

from .variant import Variant


class BatchStatus(Enum):
    """Batch status"""
    ACCEPTED = "accepted"    # validated, waiting for the executor
    RUNNING = "running"      # variants being processed
    COMPLETED = "completed"  # at least one variant succeeded
    FAILED = "failed"        # no variant succeeded


class SourceKind(Enum):
    AUDIO = "audio"
    PLAYLIST = "playlist"


@dataclass(frozen=True)
class ResolvedSource:
    """Concrete local input handed to ffmpeg

    Either a downloaded audio file or a self-contained, absolutized playlist.
    """

    kind: SourceKind
    path: str
    work_dir: str
    origin_url: str

    @property
    def is_playlist(self) -> bool:
        return self.kind is SourceKind.PLAYLIST


@dataclass
class PreviewArtifactSet:
    """Files produced by ffmpeg for one variant"""

    output_dir: str
    playlist_path: str
    segment_paths: List[str] = field(default_factory=list)

    def all_paths(self) -> List[str]:
        return [self.playlist_path] + list(self.segment_paths)

    @property
    def playlist_name(self) -> str:
        return os.path.basename(self.playlist_path)


@dataclass(frozen=True)
class VariantResult:
    """Successful preview for one variant"""

    index: int
    title: str
    cover: Optional[str]
    source_full_url: Optional[str]
    preview_path: str

    def to_dict(self) -> Dict[str, Any]:
        """Callback payload representation"""
        return {
            "index": self.index,
            "title": self.title,
            "cover": self.cover,
            "sourceFullUrl": self.source_full_url,
            "previewPath": self.preview_path,
        }


@dataclass(frozen=True)
class VariantError:
    """Failure record for one variant"""

    index: int
    error: str

    def to_dict(self) -> Dict[str, Any]:
        return {"index": self.index, "error": self.error}


@dataclass
class BatchRequest:
    """Validated batch request"""

    task_id: str
    customer_id: str
    raw_variants: List[Dict[str, Any]]


@dataclass
class BatchOutcome:
    """Terminal outcome of one batch

    COMPLETED carries the successes sorted by index; FAILED carries one
    error record per variant.
    """

    task_id: str
    customer_id: str
    status: BatchStatus = BatchStatus.ACCEPTED
    results: List[VariantResult] = field(default_factory=list)
    errors: List[VariantError] = field(default_factory=list)
    created_at: float = field(default_factory=time.time)
    completed_at: Optional[float] = None

    @property
    def succeeded(self) -> bool:
        return self.status == BatchStatus.COMPLETED

    def finish(self, results: List[VariantResult], errors: List[VariantError]) -> 'BatchOutcome':
        """Freeze the outcome from the collected results and errors

        Args:
            results: successful variant results, any order
            errors: failed variant records, any order

        Returns:
            self
        """
        self.results = sorted(results, key=lambda r: r.index)
        self.errors = sorted(errors, key=lambda e: e.index)
        self.status = BatchStatus.COMPLETED if self.results else BatchStatus.FAILED
        self.completed_at = time.time()
        return self

    def to_callback_payload(self) -> Dict[str, Any]:
        """Body of the outbound result callback"""
        payload: Dict[str, Any] = {
            "mode": "conversion-complete" if self.succeeded else "conversion-failed",
            "customerId": self.customer_id,
            "taskId": self.task_id,
        }
        if self.succeeded:
            payload["finalItems"] = [r.to_dict() for r in self.results]
        else:
            payload["errs"] = [e.to_dict() for e in self.errors]
        return payload


def make_result(variant: Variant, preview_path: str) -> VariantResult:
    return VariantResult(
        index=variant.index,
        title=variant.title,
        cover=variant.cover_image_url,
        source_full_url=variant.direct_audio_url if variant.source_kind == "audio" else None,
        preview_path=preview_path,
    )
