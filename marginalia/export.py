"""
Export a video's notes to subtitle and document formats.

Notes are points in time; for subtitle formats each cue runs until the next
note, capped at ``MAX_CUE_MS`` so a lone note does not cover the whole video.
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from .models import NoteRecord, VideoAnnotationSet, strip_markup
from .timecode import ms_to_timecode

MAX_CUE_MS = 5000
FORMATS = ("vtt", "srt", "json", "md")


def _cues(notes: List[NoteRecord]):
    ordered = sorted(notes, key=lambda n: (n.time, n.id))
    for i, note in enumerate(ordered):
        start = int(round(note.time * 1000))
        end = start + MAX_CUE_MS
        if i + 1 < len(ordered):
            next_start = int(round(ordered[i + 1].time * 1000))
            if next_start > start:
                end = min(end, next_start)
        yield i + 1, note, start, end


def _cue_text(note: NoteRecord) -> str:
    lines = [line.strip() for line in strip_markup(note.content).splitlines()]
    return "\n".join(line for line in lines if line)


def render_webvtt(notes: List[NoteRecord]) -> str:
    """WebVTT is the native browser format for video captions/subtitles."""
    lines = ["WEBVTT", ""]
    for index, note, start, end in _cues(notes):
        lines.append(str(index))
        lines.append(f"{ms_to_timecode(start, 'vtt')} --> {ms_to_timecode(end, 'vtt')}")
        lines.append(_cue_text(note))
        lines.append("")
    return "\n".join(lines)


def render_srt(notes: List[NoteRecord]) -> str:
    """SRT is widely supported by video editors like Premiere, DaVinci Resolve."""
    lines = []
    for index, note, start, end in _cues(notes):
        lines.append(str(index))
        lines.append(f"{ms_to_timecode(start, 'srt')} --> {ms_to_timecode(end, 'srt')}")
        lines.append(_cue_text(note))
        lines.append("")
    return "\n".join(lines)


def render_json(video: VideoAnnotationSet) -> str:
    data = {
        "version": "1.0",
        "exported_at": datetime.now(timezone.utc).isoformat(),
        "video_id": video.video_id,
        "title": video.title,
        "count": len(video.notes),
        "notes": [
            {"id": n.id, "time": n.time, "display_time": n.display_time, "content": n.content}
            for n in video.sorted_notes()
        ],
    }
    return json.dumps(data, indent=2, ensure_ascii=False)


def render_markdown(video: VideoAnnotationSet) -> str:
    lines = [f"# {video.title or video.video_id}", ""]
    for note in video.sorted_notes():
        lines.append(f"## {note.display_time}")
        lines.append("")
        lines.append(_cue_text(note))
        lines.append("")
    return "\n".join(lines)


def render(video: VideoAnnotationSet, format: str) -> str:
    """Render a video's notes in one of ``FORMATS``."""
    notes = list(video.notes.values())
    if format == "vtt":
        return render_webvtt(notes)
    if format == "srt":
        return render_srt(notes)
    if format == "json":
        return render_json(video)
    if format == "md":
        return render_markdown(video)
    raise ValueError(f"Unknown format: {format}")


def export_notes(
    video: VideoAnnotationSet,
    format: str,
    output_path: Optional[Path] = None,
) -> Path:
    """Write an export file; defaults to ``<video_id>_notes.<format>`` in the cwd."""
    text = render(video, format)
    if output_path is None:
        output_path = Path(f"{video.video_id}_notes.{format}")
    output_path = Path(output_path)
    output_path.write_text(text, encoding="utf-8")
    return output_path
