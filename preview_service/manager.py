"""
Preview batch manager

Drives one batch end to end:
- validates and normalises the request
- resolves, transcodes and uploads each variant under the concurrency limiter
- aggregates successes and reports the outcome through the callback
- removes every variant working directory on every exit path
"""

import os
import re
import shutil
import tempfile
import threading
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Dict, List, Mapping, Optional

import requests

from .callback import ResultNotifier
from .config import PreviewConfig
from .errors import InvalidVariant, PreviewError, ValidationError
from .ffmpeg import FFmpegRunner
from .limiter import ConcurrencyLimiter
from .playlist import PlaylistResolver
from .retry import RetryPolicy
from .task import BatchOutcome, BatchRequest, BatchStatus, VariantError, VariantResult, make_result
from .uploader import PreviewUploader, S3ObjectStore
from .variant import Variant, normalize_variants, split_eligible

logger = logging.getLogger(__name__)

REQUEST_KEYS = {
    "task_id": ("internalTaskId", "taskId", "task_id"),
    "customer_id": ("customerId", "customer_id"),
    "variants": ("sunoVariants", "variants"),
}

# Task ids become part of object keys and directory names
TASK_ID_RE = re.compile(r"^[A-Za-z0-9._-]{1,128}$")


def _first_present(payload: Mapping[str, Any], keys) -> Any:
    for key in keys:
        value = payload.get(key)
        if value not in (None, ""):
            return value
    return None


def validate_request(payload: Any) -> BatchRequest:
    """Check the minimal batch shape

    Args:
        payload: decoded JSON body

    Returns:
        BatchRequest

    Raises:
        ValidationError: the request must not enter the pipeline
    """
    if not isinstance(payload, Mapping):
        raise ValidationError("request body must be a JSON object")

    task_id = _first_present(payload, REQUEST_KEYS["task_id"])
    customer_id = _first_present(payload, REQUEST_KEYS["customer_id"])
    variants = _first_present(payload, REQUEST_KEYS["variants"])

    if task_id is None or not TASK_ID_RE.match(str(task_id)):
        raise ValidationError("missing or invalid task id")
    if customer_id is None or not str(customer_id).strip():
        raise ValidationError("missing customer id")
    if not isinstance(variants, list) or not variants:
        raise ValidationError("variants must be a non-empty list")

    return BatchRequest(
        task_id=str(task_id),
        customer_id=str(customer_id).strip(),
        raw_variants=[v if isinstance(v, dict) else {} for v in variants],
    )


class PreviewManager:
    """Preview batch manager

    Owns the process-wide HTTP session, object store client and the
    background executor batches run on.
    """

    def __init__(
        self,
        config: PreviewConfig,
        resolver: Optional[PlaylistResolver] = None,
        ffmpeg_runner: Optional[FFmpegRunner] = None,
        uploader: Optional[PreviewUploader] = None,
        notifier: Optional[ResultNotifier] = None,
        session: Optional[requests.Session] = None,
    ):
        """Initialise the manager

        Collaborators default to the production implementations built from config.

        Args:
            config: preview configuration
            resolver: playlist resolver
            ffmpeg_runner: preview transcoder
            uploader: artifact uploader
            notifier: result callback sender
            session: shared HTTP session
        """
        self.config = config
        self.session = session or requests.Session()
        self.resolver = resolver or PlaylistResolver(
            session=self.session,
            timeout=config.request_timeout,
            user_agent=config.user_agent,
            retry_policy=RetryPolicy(max_attempts=config.fetch_retry_attempts, delay=config.fetch_retry_delay),
            max_bytes=config.max_playlist_bytes,
            deadline=config.fetch_deadline,
        )
        self.ffmpeg_runner = ffmpeg_runner or FFmpegRunner(config, session=self.session)
        self.uploader = uploader or PreviewUploader(S3ObjectStore.from_config(config), config)
        self.notifier = notifier or ResultNotifier(config, session=self.session)

        self.lock = threading.RLock()
        self.active_batches: Dict[str, BatchStatus] = {}
        self.executor = ThreadPoolExecutor(
            max_workers=config.max_concurrent_batches,
            thread_name_prefix="PreviewBatch",
        )

    def stop(self, wait: bool = True):
        """Stop accepting batches and optionally wait for running ones"""
        self.executor.shutdown(wait=wait)

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    def submit_batch(self, request: BatchRequest) -> Future:
        """Queue a validated batch for background processing

        Args:
            request: validated batch request

        Returns:
            Future resolving to the BatchOutcome
        """
        with self.lock:
            self.active_batches[request.task_id] = BatchStatus.ACCEPTED
        logger.info(f"Batch {request.task_id} accepted with {len(request.raw_variants)} variants")
        return self.executor.submit(self.run_batch, request)

    def run_batch(self, request: BatchRequest) -> BatchOutcome:
        """Process one batch and always report it through the callback

        Args:
            request: validated batch request

        Returns:
            BatchOutcome
        """
        outcome = BatchOutcome(task_id=request.task_id, customer_id=request.customer_id)
        with self.lock:
            self.active_batches[request.task_id] = BatchStatus.RUNNING

        try:
            results, errors = self._process_variants(request)
            outcome.finish(results, errors)
        except Exception as exc:
            logger.exception(f"Batch {request.task_id} crashed")
            summary = f"{type(exc).__name__}: {exc}"
            outcome.finish([], [VariantError(index=i, error=summary) for i in range(len(request.raw_variants))])
        finally:
            with self.lock:
                self.active_batches.pop(request.task_id, None)

        logger.info(
            f"Batch {request.task_id} {outcome.status.value}: "
            f"{len(outcome.results)} succeeded, {len(outcome.errors)} failed"
        )
        self.notifier.notify(outcome)
        return outcome

    def _process_variants(self, request: BatchRequest):
        variants = normalize_variants(request.raw_variants)
        eligible, invalid = split_eligible(variants)

        errors: List[VariantError] = [
            VariantError(index=v.index, error=InvalidVariant("no audio or stream URL").summary())
            for v in invalid
        ]
        results: List[VariantResult] = []

        limiter = ConcurrencyLimiter(self.config.max_concurrent_variants, name=f"variant-{request.task_id}")
        for settled in limiter.run_all(lambda v: self.process_variant(request.task_id, v), eligible):
            if settled.ok:
                results.append(settled.value)
            else:
                errors.append(VariantError(index=settled.item.index, error=_summarize(settled.error)))
        return results, errors

    # ------------------------------------------------------------------
    # Variant
    # ------------------------------------------------------------------

    def process_variant(self, task_id: str, variant: Variant) -> VariantResult:
        """Resolve, transcode and upload one variant

        The working directory is removed whether the variant succeeds or fails.

        Args:
            task_id: batch identifier
            variant: eligible variant

        Returns:
            VariantResult
        """
        os.makedirs(self.config.work_dir, exist_ok=True)
        work_dir = tempfile.mkdtemp(prefix=f"preview-{task_id}-{variant.index}-", dir=self.config.work_dir)
        logger.info(f"Variant {task_id}-{variant.index} started ({variant.source_kind})")
        try:
            if variant.source_kind == "audio":
                source = self.ffmpeg_runner.download_audio(variant.direct_audio_url, work_dir)
            else:
                source = self.resolver.resolve(variant.stream_url, work_dir)

            artifacts = self.ffmpeg_runner.transcode(source, os.path.join(work_dir, "out"))
            preview_path = self.uploader.upload(artifacts, task_id, variant.index)
        except Exception as exc:
            logger.error(f"Variant {task_id}-{variant.index} failed: {_summarize(exc)}")
            raise
        finally:
            self._remove_work_dir(work_dir)

        logger.info(f"Variant {task_id}-{variant.index} done: {preview_path}")
        return make_result(variant, preview_path)

    def _remove_work_dir(self, work_dir: str):
        try:
            shutil.rmtree(work_dir)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Failed to remove working directory {work_dir}: {e}")

    def get_status_summary(self) -> Dict[str, Any]:
        """Status summary for the health endpoint

        Returns:
            status dictionary
        """
        with self.lock:
            return {
                "active_batches": len(self.active_batches),
                "max_concurrent_batches": self.config.max_concurrent_batches,
                "max_concurrent_variants": self.config.max_concurrent_variants,
                "max_concurrent_uploads": self.config.max_concurrent_uploads,
                "max_concurrent_transcodes": self.config.max_concurrent_batches * self.config.max_concurrent_variants,
            }


def _summarize(exc: BaseException) -> str:
    if isinstance(exc, PreviewError):
        return exc.summary()
    return f"{type(exc).__name__}: {exc}"


def get_preview_manager(config: PreviewConfig, **kwargs) -> PreviewManager:
    """Create a preview manager

    Args:
        config: preview configuration

    Returns:
        PreviewManager instance
    """
    return PreviewManager(config, **kwargs)
