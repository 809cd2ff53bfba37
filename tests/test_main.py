import pytest
import yaml

from crackscan.database_manager import DatabaseManager
from crackscan.main import main
from crackscan.storage import LocalBlobStore
from crackscan.upload_pipeline import UploadPipeline


@pytest.fixture
def config_file(tmp_path):
    def write(**overrides):
        config = {
            'paths': {
                'storage_root': str(tmp_path / "storage"),
                'db_path': str(tmp_path / "crackscan.db"),
                'logs_dir': str(tmp_path / "logs"),
                'reports_dir': str(tmp_path / "reports"),
            },
            'logging': {'console_logging': False, 'file_logging': False},
        }
        for section, values in overrides.items():
            config.setdefault(section, {}).update(values)
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump(config))
        return str(path)
    return write


def test_reconstruct_writes_log(tmp_path, config_file):
    fixes = tmp_path / "fixes.csv"
    fixes.write_text("second,latitude,longitude,accuracy\n1,41.0,29.0,5\n3,41.2,29.2,5\n")
    output = tmp_path / "out" / "gps_by_second.csv"

    code = main(["--config", config_file(), "reconstruct", str(fixes), "--duration", "3", "-o", str(output)])

    assert code == 0
    lines = output.read_text().splitlines()
    assert lines[0] == "second,latitude,longitude,accuracy"
    assert len(lines) == 4


def test_reconstruct_missing_file_fails(tmp_path, config_file):
    code = main(["--config", config_file(), "reconstruct", str(tmp_path / "none.csv"), "--duration", "3"])
    assert code == 1


def test_list_and_delete(tmp_path, config_file, capsys):
    path = config_file()
    store = LocalBlobStore(tmp_path / "storage")
    record = UploadPipeline(store, DatabaseManager(tmp_path / "crackscan.db"), "user-1").upload([b"video"], 2)

    assert main(["--config", path, "list", "--owner", "user-1", "--status", "Queued"]) == 0
    assert record.id in capsys.readouterr().out

    assert main(["--config", path, "delete", record.id]) == 0
    assert store.list("videos") == []

    assert main(["--config", path, "list", "--owner", "user-1"]) == 0
    assert "No videos" in capsys.readouterr().out


def test_delete_unknown_video(config_file):
    assert main(["--config", config_file(), "delete", "missing"]) == 1


def test_process_unknown_video(config_file):
    assert main(["--config", config_file(), "process", "missing"]) == 1


def test_invalid_configuration(tmp_path, config_file):
    path = config_file(extraction={'fps': 0})
    fixes = tmp_path / "fixes.csv"
    fixes.write_text("1,41.0,29.0\n")

    assert main(["--config", path, "reconstruct", str(fixes), "--duration", "1"]) == 1


class StubRecorder:
    """Recorder double: one chunk per written frame."""

    def __init__(self):
        self.frames = 0

    @classmethod
    def from_config(cls, config, **kwargs):
        return cls()

    def attach(self, width, height, fps=None):
        pass

    def start(self):
        pass

    def write(self, frame):
        self.frames += 1

    def stop(self):
        return [b"frame-%d" % i for i in range(self.frames)]


def test_record_uploads_after_ctrl_c(tmp_path, config_file, fake_capture, monkeypatch, capsys):
    monkeypatch.setattr("crackscan.main.VideoRecorder", StubRecorder)
    fake_capture(live_frames=1000, interrupt_after=3)

    code = main(["--config", config_file(), "record", "--source", "device", "--owner", "user-1"])

    assert code == 0
    assert "RECORDING QUEUED" in capsys.readouterr().out
    records = DatabaseManager(tmp_path / "crackscan.db").get_videos("user-1")
    assert len(records) == 1
    store = LocalBlobStore(tmp_path / "storage")
    assert store.download("videos", records[0].video_location) == b"frame-0frame-1frame-2"
