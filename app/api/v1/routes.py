from uuid import uuid4

from fastapi import APIRouter, Depends, File, HTTPException, Response, UploadFile, status

from app.api.v1.schemas import (
    AnalysisInfo,
    DetectedObjectInfo,
    FormatInfo,
    JobCreateResponse,
    JobDetail,
    JobOutputsResponse,
    JobSummary,
    OutputInfo,
)
from app.models.ads import AnalysisResult
from app.services.catalog import get_catalog
from app.services.jobs import InvalidSourceImage, JobStorageError, JobStore, get_job_store

router = APIRouter(prefix="/api/v1")


def _analysis_info(analysis: AnalysisResult) -> AnalysisInfo:
    return AnalysisInfo(
        objects=[
            DetectedObjectInfo(
                label=obj.label,
                confidence=obj.confidence,
                box=[obj.box.xmin, obj.box.ymin, obj.box.xmax, obj.box.ymax],
            )
            for obj in analysis.objects
        ],
        colors=[color.css() for color in analysis.colors],
        style=analysis.style.value,
        text_lines=list(analysis.text_lines),
        degraded=analysis.degraded,
    )


async def _require_job(job_id: str, store: JobStore):
    job = await store.get_job(job_id)
    if job is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Job not found.",
        )
    return job


@router.get("/health", tags=["health"])
async def health_check() -> dict:
    """API v1 health check endpoint."""
    return {"status": "ok", "api_version": "v1"}


@router.get(
    "/formats",
    response_model=list[FormatInfo],
    tags=["formats"],
    summary="List the output format catalog",
)
async def list_formats() -> list[FormatInfo]:
    """Return every format each job is adapted to, in catalog order."""
    return [
        FormatInfo(
            key=fmt.key,
            name=fmt.name,
            width=fmt.width,
            height=fmt.height,
            ratio=fmt.ratio_label,
        )
        for fmt in get_catalog()
    ]


@router.post(
    "/jobs",
    response_model=JobCreateResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["jobs"],
    summary="Adapt an advertisement to every catalog format",
)
async def create_job(
    source_image: UploadFile = File(..., description="Source advertisement (PNG, JPG or WEBP)."),
    store: JobStore = Depends(get_job_store),
) -> JobCreateResponse:
    """
    Create a new adaptation job.

    The client sends a multipart/form-data request with a single
    `source_image` file. The image is analyzed (objects, dominant colors,
    style, text) and adapted to each catalog format before the response is
    returned; formats that fail are reported as failed outputs rather than
    failing the request.
    """
    job_id = str(uuid4())

    try:
        job = await store.create_job(job_id=job_id, source_image=source_image)
    except InvalidSourceImage as exc:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="`source_image` is not a readable image.",
        ) from exc
    except JobStorageError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to persist job and associated assets.",
        ) from exc

    return JobCreateResponse(
        job_id=job.id,
        status=job.status,
        outputs=[key for key, result in job.results.items() if result.ok],
    )


@router.get(
    "/jobs/{job_id}",
    response_model=JobDetail,
    tags=["jobs"],
    summary="Get details for a specific job",
)
async def get_job(job_id: str, store: JobStore = Depends(get_job_store)) -> JobDetail:
    """
    Retrieve status, analysis and per-format progress for a single job.

    This does not expose internal file paths; it is designed for frontend
    consumption.
    """
    job = await _require_job(job_id, store)
    return JobDetail(
        id=job.id,
        status=job.status,
        source_width=job.source_width,
        source_height=job.source_height,
        renderer=job.renderer,
        analysis=_analysis_info(job.analysis) if job.analysis else None,
        progress=dict(job.progress),
        error=job.error,
        created_at=job.created_at.isoformat(),
        updated_at=job.updated_at.isoformat(),
    )


@router.get(
    "/jobs",
    response_model=list[JobSummary],
    tags=["jobs"],
    summary="List jobs (development use)",
)
async def list_jobs(store: JobStore = Depends(get_job_store)) -> list[JobSummary]:
    """
    List all known jobs.

    Intended primarily for development and debugging; in a real multi-tenant
    system, this would likely be scoped or protected.
    """
    jobs = await store.list_jobs()
    return [JobSummary.model_validate(job) for job in jobs]


@router.get(
    "/jobs/{job_id}/outputs",
    response_model=JobOutputsResponse,
    tags=["jobs"],
    summary="Get per-format outcomes for a job",
)
async def get_job_outputs(
    job_id: str, store: JobStore = Depends(get_job_store)
) -> JobOutputsResponse:
    """
    Return one entry per catalog format: strategy used, or why it failed.

    Successful entries carry a download URL; failed formats are listed as
    absent so callers can offer a retry or partial-success message.
    """
    job = await _require_job(job_id, store)

    outputs: list[OutputInfo] = []
    for key, result in job.results.items():
        outputs.append(
            OutputInfo(
                key=key,
                name=result.format.name,
                width=result.format.width,
                height=result.format.height,
                ok=result.ok,
                strategy=result.plan.strategy.value if result.plan else None,
                error_kind=result.error_kind,
                message=result.message,
                url=f"/api/v1/jobs/{job.id}/outputs/{key}" if result.ok else None,
            )
        )

    return JobOutputsResponse(job_id=job.id, status=job.status, outputs=outputs)


@router.get(
    "/jobs/{job_id}/outputs/{key}",
    tags=["jobs"],
    summary="Download one generated format as PNG",
    responses={200: {"content": {"image/png": {}}}},
)
async def download_output(
    job_id: str, key: str, store: JobStore = Depends(get_job_store)
) -> Response:
    """Serve the PNG bytes of a successfully generated format."""
    job = await _require_job(job_id, store)
    result = job.results.get(key)
    if result is None or not result.ok:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Output not available for this format.",
        )
    return Response(
        content=result.image,
        media_type="image/png",
        headers={"Content-Disposition": f'attachment; filename="{key}.png"'},
    )
