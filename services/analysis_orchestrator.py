"""Compose bootstrap, inference, and persistence for one analysis at a time."""

from __future__ import annotations

import logging
from typing import Optional

from models.analysis_payload import AnalysisPayload
from models.analysis_record import AnalysisRecord
from models.session_models import AnalysisState, RetrievalState
from services.identity.identity_bootstrap import IdentityBootstrap
from services.inference.analysis_schema import ANALYSIS_SCHEMA
from services.inference.inference_client import InferenceClient
from services.inference.prompts import ANALYSIS_PROMPT
from services.store.synced_collection import SyncedCollection
from services.thumbnail_generator import ThumbnailGenerator
from utils.app_config import InferenceConfig
from utils.errors import (
    AnalysisError,
    AnalysisInProgress,
    InferenceFailed,
    NoImage,
    NotReady,
)
from utils.media_validation import to_data_uri, validate_image

SAVE_FAILED_MESSAGE = "Could not save the analysis to the history"


class AnalysisOrchestrator:
    """Run analyses through IDLE -> SUBMITTING -> SUCCESS | FAILED.

    Results and errors are exposed on the `result`, `error`,
    `persist_error`, and `last_record` slots. Only one analysis may be
    submitting at a time.
    """

    def __init__(
        self,
        bootstrap: IdentityBootstrap,
        inference_client: InferenceClient,
        collection: SyncedCollection,
        config: InferenceConfig,
        thumbnails: Optional[ThumbnailGenerator] = None,
    ) -> None:
        self.bootstrap = bootstrap
        self.inference_client = inference_client
        self.collection = collection
        self.config = config
        self.thumbnails = thumbnails or ThumbnailGenerator()

        self.state = AnalysisState.IDLE
        self.result: Optional[AnalysisPayload] = None
        self.error: Optional[str] = None
        self.persist_error: Optional[str] = None
        self.last_record: Optional[AnalysisRecord] = None
        self._staged_image: Optional[bytes] = None
        self._staged_mime: Optional[str] = None

    @property
    def has_staged_image(self) -> bool:
        return self._staged_image is not None

    def _validate(self, image: bytes, mime_type: Optional[str]) -> str:
        return validate_image(
            image,
            mime_type,
            max_bytes=self.config.max_image_bytes,
            allowed_types=self.config.allowed_mime_types,
        )

    def stage_image(self, image: bytes, mime_type: Optional[str]) -> None:
        """Stage an image for the next run, clearing the previous result.

        Raises:
            ImageRejected: The image is empty, too large, or of an unsupported type.
        """
        self.result = None
        try:
            content_type = self._validate(image, mime_type)
        except AnalysisError as exc:
            self.clear_staged()
            self.error = str(exc)
            raise
        self.error = None
        self._staged_image = image
        self._staged_mime = content_type

    def clear_staged(self) -> None:
        self._staged_image = None
        self._staged_mime = None

    async def run_analysis(self, image: Optional[bytes] = None, mime_type: Optional[str] = None) -> None:
        """Analyze the given (or staged) image and persist the result.

        Precondition failures raise without contacting the network:
        AnalysisInProgress, NotReady, NoImage, ImageRejected. Inference and
        persistence failures are reported through the error slots.
        """
        if self.state is AnalysisState.SUBMITTING:
            raise AnalysisInProgress("An analysis is already in progress.")
        try:
            if self.bootstrap.state is not RetrievalState.READY:
                raise NotReady("Authentication is not ready yet; please wait.")
            identity = self.bootstrap.require_identity()
            if image is None:
                image, mime_type = self._staged_image, self._staged_mime
            if not image:
                raise NoImage("Please upload an image first.")
            content_type = self._validate(image, mime_type)
        except AnalysisError as exc:
            self.error = str(exc)
            raise

        self.state = AnalysisState.SUBMITTING
        self.result = None
        self.error = None
        self.persist_error = None
        self.last_record = None
        try:
            try:
                payload = await self.inference_client.analyze(image, content_type, ANALYSIS_SCHEMA, ANALYSIS_PROMPT)
            except InferenceFailed as exc:
                logging.error("Analysis failed: %s", exc)
                self.error = str(exc)
                self.state = AnalysisState.FAILED
                return

            self.result = payload
            try:
                record = AnalysisRecord.from_payload(
                    payload,
                    image_url=to_data_uri(image, content_type),
                    mime_type=content_type,
                    thumbnail_url=self._thumbnail(image),
                )
                self.last_record = await self.collection.write(identity, record)
            except Exception as exc:
                logging.error("Error saving the analysis: %s", exc)
                self.persist_error = f"{SAVE_FAILED_MESSAGE}: {exc}"
            self.state = AnalysisState.SUCCESS
        except BaseException as exc:
            if self.state is AnalysisState.SUBMITTING:
                self.state = AnalysisState.FAILED
                self.error = str(exc) or exc.__class__.__name__
            raise

    def _thumbnail(self, image: bytes) -> Optional[str]:
        try:
            return self.thumbnails.create_thumbnail_data_uri(image)
        except ValueError as exc:
            logging.warning("Thumbnail generation skipped: %s", exc)
            return None
