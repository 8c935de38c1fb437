import pytest
from pathlib import Path
from pydantic import ValidationError
from revive.config.loader import load_config
from revive.config.models import AppConfig, EncodingConfig, GeneralConfig, ToolsConfig

def test_defaults():
    config = AppConfig()
    assert config.general.output_dir == Path("output_videos")
    assert config.general.frame_batch_size == 150
    assert config.general.max_parallel_jobs == 2
    assert config.tools.realesrgan == "realesrgan-ncnn-vulkan"
    assert config.encoding.crf == 18
    assert config.encoding.pix_fmt == "yuv420p"

@pytest.mark.parametrize("suffix", ["up scaled", "x/y", ""])
def test_invalid_suffix(suffix):
    with pytest.raises(ValidationError):
        GeneralConfig(output_suffix=suffix)

def test_thread_spec_validation():
    assert ToolsConfig(threads="1:2,2:2").threads == "1:2,2:2"
    with pytest.raises(ValidationError):
        ToolsConfig(threads="two")

def test_crf_range():
    with pytest.raises(ValidationError):
        EncodingConfig(crf=60)

def test_load_config_from_yaml(tmp_path):
    path = tmp_path / "revive.yaml"
    path.write_text(
        "general:\n"
        "  max_parallel_jobs: 4\n"
        "  output_suffix: hd\n"
        "tools:\n"
        "  gpu_id: 1\n"
    )
    config = load_config(path)
    assert config.general.max_parallel_jobs == 4
    assert config.general.output_suffix == "hd"
    assert config.tools.gpu_id == 1
    assert config.encoding.codec == "libx264"

def test_load_config_missing_file(tmp_path):
    assert load_config(tmp_path / "nope.yaml") == AppConfig()
    assert load_config(None) == AppConfig()

def test_load_config_invalid(tmp_path):
    path = tmp_path / "bad.yaml"
    path.write_text("general:\n  max_parallel_jobs: 0\n")
    with pytest.raises(ValueError, match="Invalid config"):
        load_config(path)

    path.write_text("- just\n- a list\n")
    with pytest.raises(ValueError, match="mapping"):
        load_config(path)

def test_shipped_config_loads():
    path = Path(__file__).resolve().parents[2] / "conf" / "revive.yaml"
    config = load_config(path)
    assert config.general.workspace_root is None
    assert config.tools.threads == "2:2:2"
