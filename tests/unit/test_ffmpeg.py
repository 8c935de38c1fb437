import pytest
from pathlib import Path
from unittest.mock import patch
from revive.config.models import EncodingConfig
from revive.domain.models import VideoMetadata
from revive.infrastructure.ffmpeg import FFmpegAdapter, even_size, parse_frame_count, prescale_factor
from revive.pipeline.cancellation import CancelToken

def _meta(width=1920, height=1080, frames=100):
    return VideoMetadata(width=width, height=height, frame_rate=25.0, total_frames=frames)

def test_parse_frame_count():
    assert parse_frame_count("frame=  123 fps= 30 q=-0.0 size=N/A time=00:00:04.10") == 123
    assert parse_frame_count("frame=7 fps=0.0") == 7
    assert parse_frame_count("Stream mapping:") is None

@pytest.mark.parametrize("width,height,scale,expected", [
    (320, 240, 4, 1),
    (1920, 300, 4, 1),
    (1920, 1080, 4, 2),
    (1920, 1080, 3, 1),
    (1920, 1080, 2, 2),
])
def test_prescale_factor(width, height, scale, expected):
    assert prescale_factor(_meta(width, height), scale) == expected

def test_even_size_keeps_aspect():
    assert even_size(_meta(1920, 1080), 720) == (1280, 720)
    assert even_size(_meta(1920, 1080), 481) == (854, 480)

def test_extract_command():
    adapter = FFmpegAdapter()
    cmd = adapter.build_extract_command(Path("in.mp4"), Path("/w/frames"))
    assert cmd[:4] == ["ffmpeg", "-hide_banner", "-nostdin", "-y"]
    assert "-vf" not in cmd
    assert cmd[-1] == str(Path("/w/frames") / "frame_%08d.png")

    cmd = adapter.build_extract_command(Path("in.mp4"), Path("/w/frames"), divisor=2)
    assert "scale=trunc(iw/2/2)*2:trunc(ih/2/2)*2" in cmd

def test_encode_command_defaults_to_crf():
    adapter = FFmpegAdapter(encoding=EncodingConfig(crf=20, preset="slow"))
    cmd = adapter.build_encode_command(Path("/w/up"), Path("/w/out.mp4"), 29.97)
    assert cmd[cmd.index("-framerate") + 1] == "29.97"
    assert cmd[cmd.index("-c:v") + 1] == "libx264"
    assert cmd[cmd.index("-crf") + 1] == "20"
    assert cmd[cmd.index("-preset") + 1] == "slow"
    assert cmd[cmd.index("-pix_fmt") + 1] == "yuv420p"
    assert "-b:v" not in cmd
    assert cmd[-1] == str(Path("/w/out.mp4"))

def test_encode_command_with_rescale_target():
    cmd = FFmpegAdapter().build_encode_command(Path("/w/f"), Path("/w/o.mp4"), 30, size=(1280, 720), bitrate_kbps=2666.6)
    assert cmd[cmd.index("-vf") + 1] == "scale=1280:720"
    assert cmd[cmd.index("-b:v") + 1] == "2667k"
    assert "-crf" not in cmd

def test_encode_command_changes_rate_on_output():
    cmd = FFmpegAdapter().build_encode_command(
        Path("/w/f"), Path("/w/o.mp4"), 25.0, size=(1280, 720), output_frame_rate=12.5
    )
    # Input keeps the extraction rate so the duration is unchanged
    assert cmd[cmd.index("-framerate") + 1] == "25"
    assert cmd.index("-framerate") < cmd.index("-i")
    assert cmd[cmd.index("-vf") + 1] == "scale=1280:720,fps=12.5"

def test_encode_frames_progress_counts_output_frames(tmp_path):
    fractions = []

    def fake_run(self, command, cwd=None, on_output_line=None):
        on_output_line("frame=   25 fps=0.0")
        on_output_line("frame=   50 fps=0.0")
        return 0

    with patch("revive.infrastructure.ffmpeg.ToolRunner.run", fake_run):
        FFmpegAdapter().encode_frames(
            tmp_path, tmp_path / "o.mp4", 25.0, 100, CancelToken(),
            on_progress=fractions.append, output_frame_rate=12.5,
        )

    assert fractions == [0.5, 1.0]

def test_merge_audio_command():
    cmd = FFmpegAdapter().build_merge_audio_command(Path("v.mp4"), Path("src.mp4"), Path("out.mp4"))
    assert cmd.count("-map") == 2
    assert "1:a?" in cmd
    assert cmd[cmd.index("-c:v") + 1] == "copy"
    assert cmd[cmd.index("-c:a") + 1] == "aac"

def test_extract_frames_reports_progress_and_counts(tmp_path):
    frames_dir = tmp_path / "frames"
    frames_dir.mkdir()
    lines, fractions = [], []

    def fake_run(self, command, cwd=None, on_output_line=None):
        for i in range(1, 5):
            (frames_dir / f"frame_{i:08d}.png").write_bytes(b"x")
        on_output_line("frame=    2 fps=0.0")
        on_output_line("frame=    4 fps=0.0")
        return 0

    with patch("revive.infrastructure.ffmpeg.ToolRunner.run", fake_run):
        count = FFmpegAdapter().extract_frames(
            tmp_path / "in.mp4", frames_dir, _meta(frames=4), CancelToken(),
            on_line=lines.append, on_progress=fractions.append,
        )

    assert count == 4
    assert lines == ["frame=    2 fps=0.0", "frame=    4 fps=0.0"]
    assert fractions == [0.5, 1.0]

def test_tool_runner_gets_stage_name(tmp_path):
    with patch("revive.infrastructure.ffmpeg.ToolRunner") as runner_cls:
        FFmpegAdapter(grace_seconds=2.0).merge_audio(
            tmp_path / "v.mp4", tmp_path / "s.mp4", tmp_path / "o.mp4", CancelToken()
        )
    args, kwargs = runner_cls.call_args
    assert args[0] == "merging_audio"
    assert kwargs["grace_seconds"] == 2.0
    runner_cls.return_value.run.assert_called_once()
