from typing import Any, Dict

from fastapi import HTTPException, Request, UploadFile
from fastapi.responses import Response

from models.session_models import AnalysisState
from services.analysis_orchestrator import AnalysisOrchestrator
from services.store.history_mirror import HistoryMirror
from utils.errors import AnalysisInProgress, ImageRejected, NoImage, NotReady
from utils.media_validation import parse_data_uri

_REJECTION_STATUS = {"size": 413, "mime_type": 415, "empty": 400}


async def submit_analysis(request: Request, file: UploadFile) -> Dict[str, Any]:
    """Stage the uploaded image, run the analysis, and report every result slot.

    Args:
        request: FastAPI Request object (used to access app.state for shared services).
        file: Uploaded PNG or JPEG image.

    Returns:
        A dict containing: state, result, error, persist_error, record_id, created_at

    Raises:
        HTTPException(413/415/400) for rejected images, 409 while another analysis
        is submitting, 503 before the identity is ready, 502 when inference failed.
    """
    orchestrator: AnalysisOrchestrator = request.app.state.orchestrator

    raw = await file.read()
    if orchestrator.state is AnalysisState.SUBMITTING:
        raise HTTPException(status_code=409, detail="An analysis is already in progress.")

    try:
        orchestrator.stage_image(raw, file.content_type)
        await orchestrator.run_analysis()
    except ImageRejected as exc:
        raise HTTPException(status_code=_REJECTION_STATUS.get(exc.reason, 400), detail=str(exc)) from exc
    except AnalysisInProgress as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except NotReady as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except NoImage as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    finally:
        orchestrator.clear_staged()

    if orchestrator.result is None:
        raise HTTPException(status_code=502, detail=orchestrator.error or "Analysis failed.")

    record = orchestrator.last_record
    return {
        "state": orchestrator.state.value,
        "result": orchestrator.result.to_document(),
        "error": orchestrator.error,
        "persist_error": orchestrator.persist_error,
        "record_id": record.id if record else None,
        "created_at": record.created_at if record else None,
    }


async def list_history(request: Request, include_images: bool = False) -> Dict[str, Any]:
    """Return the local ordered history mirrored from the store."""
    history: HistoryMirror = request.app.state.history
    return {
        "uid": history.identity.uid if history.identity else None,
        "error": history.error,
        "count": len(history.records),
        "analyses": [record.to_summary(include_image=include_images) for record in history.records],
    }


async def get_image(request: Request, analysis_id: str, thumbnail: bool = False) -> Response:
    """Controller to return the stored image (or its thumbnail) for one analysis.

    Raises:
        HTTPException(404) if the analysis or thumbnail is not in the history.
    """
    history: HistoryMirror = request.app.state.history
    record = next((r for r in history.records if r.id == analysis_id), None)
    if record is None:
        raise HTTPException(status_code=404, detail="Analysis not found")

    data_uri = record.thumbnail_url if thumbnail else record.image_url
    if not data_uri:
        raise HTTPException(status_code=404, detail="Thumbnail not available for this analysis")

    mime_type, content = parse_data_uri(data_uri)
    return Response(content=content, media_type=mime_type)
