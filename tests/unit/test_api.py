import base64
import pytest
from unittest.mock import MagicMock, patch
from revive.api import UpscalerService, build_request, decode_upload
from revive.domain.errors import BatchError, InputError
from revive.domain.events import LogEmitted, ProgressUpdated
from revive.domain.models import UpscaleModel, VideoMetadata

def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode()

@pytest.fixture
def service(config):
    coordinator = MagicMock()
    svc = UpscalerService(config, coordinator=coordinator)
    return svc

def test_decode_upload():
    assert decode_upload(_b64(b"video")) == b"video"
    assert decode_upload("data:video/mp4;base64," + _b64(b"video")) == b"video"
    with pytest.raises(InputError):
        decode_upload("%%% not base64 %%%")
    with pytest.raises(InputError):
        decode_upload("")

def test_build_request_fields():
    request = build_request({
        "FileCode": "abc123", "FileBase64": _b64(b"v"), "FileName": "a.mp4",
        "Model": "realesr-animevideov3", "Scale": 2,
    })
    assert request.file_code == "abc123"
    assert request.model == UpscaleModel.REALESR_ANIMEVIDEOV3
    assert request.scale == 2
    assert request.content == b"v"

def test_build_request_rejects_bad_scale():
    with pytest.raises(InputError, match="does not support scale 2"):
        build_request({"FileBase64": _b64(b"v"), "FileName": "a.mp4", "Model": "realesrgan-x4plus", "Scale": 2})

def test_upload_merges_rejected_files(service):
    service.coordinator.submit.return_value = {"good.mp4": "Completed"}
    statuses = service.process_videos_from_upload([
        {"FileName": "good.mp4", "FileBase64": _b64(b"ok"), "Model": "realesrgan-x4plus", "Scale": 4},
        {"FileName": "bad.mp4", "FileBase64": "!!!", "Model": "realesrgan-x4plus", "Scale": 4},
        {"FileName": "scale.mp4", "FileBase64": _b64(b"ok"), "Model": "realesrgan-x4plus", "Scale": 3},
    ])

    assert statuses == {
        "good.mp4": "Completed",
        "bad.mp4": "Failed: InputError",
        "scale.mp4": "Failed: InputError",
    }
    submitted = service.coordinator.submit.call_args[0][0]
    assert [r.file_name for r in submitted] == ["good.mp4"]

def test_upload_all_rejected_skips_batch(service):
    statuses = service.process_videos_from_upload([{"FileName": "bad.mp4", "FileBase64": ""}])
    assert statuses == {"bad.mp4": "Failed: InputError"}
    service.coordinator.submit.assert_not_called()

def test_upload_duplicate_names(service):
    with pytest.raises(BatchError):
        service.process_videos_from_upload([
            {"FileName": "a.mp4", "FileBase64": _b64(b"1")},
            {"FileName": "a.mp4", "FileBase64": _b64(b"2")},
        ])

def test_cancel_processing_delegates(service):
    service.cancel_processing()
    service.coordinator.cancel.assert_called_once()

def test_get_video_info_keys(service):
    meta = VideoMetadata(
        width=1920, height=1080, bitrate_kbps=5000.0, codec="h264", container_format="mov,mp4",
        frame_rate=29.97, duration_seconds=10.0, total_frames=300, has_audio=True,
    )
    with patch.object(service.ffprobe, "probe_bytes", return_value=meta) as probe_bytes:
        info = service.get_video_info(_b64(b"video"))

    probe_bytes.assert_called_once_with(b"video")
    assert info == {
        "width": 1920, "height": 1080, "bitrate": 5000.0, "codec": "h264", "format": "mov,mp4",
        "frameRate": 29.97, "duration": 10.0, "totalFrames": 300,
    }

def test_subscribe_receives_progress_and_logs(service):
    received = []
    unsubscribe = service.subscribe(received.append)
    service.event_bus.publish(ProgressUpdated(file_name="a.mp4", percent=10, raw="Loading-10 - a.mp4"))
    service.event_bus.publish(LogEmitted(text="ffmpeg says hi"))
    unsubscribe()
    service.event_bus.publish(LogEmitted(text="after"))

    assert received == ["Loading-10 - a.mp4", "ffmpeg says hi"]

def test_host_actions(service, config):
    with patch("revive.infrastructure.host.subprocess.Popen") as popen:
        service.open_output_folder()
    assert popen.call_args[0][0][-1] == str(config.general.output_dir)
    assert config.general.output_dir.is_dir()

    with patch("revive.infrastructure.host.subprocess.run") as run:
        run.return_value.returncode = 0
        service.shutdown_computer()
    run.assert_called_once()

def test_shutdown_failure_raises():
    from revive.infrastructure import host
    with patch("revive.infrastructure.host.subprocess.run") as run:
        run.return_value.returncode = 1
        run.return_value.stderr = "Access denied"
        with pytest.raises(RuntimeError, match="Access denied"):
            host.shutdown_host()

@pytest.mark.parametrize("system,first", [("Windows", "explorer"), ("Darwin", "open"), ("Linux", "xdg-open")])
def test_open_folder_command(system, first):
    from revive.infrastructure.host import open_folder_command
    assert open_folder_command("out", system=system)[0] == first

@pytest.mark.parametrize("system,first", [("Windows", "shutdown"), ("Darwin", "osascript"), ("Linux", "systemctl")])
def test_shutdown_command(system, first):
    from revive.infrastructure.host import shutdown_command
    assert shutdown_command(system=system)[0] == first
