"""Health check endpoints."""

from fastapi import APIRouter

from textblocker.core.video.ffmpeg import find_executable

router = APIRouter()


@router.get("/health")
def health() -> dict[str, object]:
    """Lightweight health endpoint; also reports whether ffmpeg/ffprobe were found."""

    return {
        "status": "ok",
        "ffmpeg": find_executable("ffmpeg") is not None,
        "ffprobe": find_executable("ffprobe") is not None,
    }
