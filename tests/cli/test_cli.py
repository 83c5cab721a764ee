"""Tests for the command-line interface."""

import importlib.util
import json
import sys
from pathlib import Path
from unittest.mock import patch

import pytest

import embedcore.engine.lib as engine_lib
from embedcore.catalog import get_model
from embedcore.engine import EmbeddingEngineManager
from embedcore.errors import LoadError
from embedcore.loaders import LoaderType


@pytest.fixture(scope="module")
def cli():
    """The project's __main__.py loaded as a module."""
    main_path = Path(__file__).parent.parent.parent / "__main__.py"
    spec = importlib.util.spec_from_file_location("embedcore_cli", main_path)
    module = importlib.util.module_from_spec(spec)
    sys.modules["embedcore_cli"] = module
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def fake_engine(fake_loader_cls, monkeypatch):
    """Install a process-wide manager backed by fake loaders."""
    manager = EmbeddingEngineManager(
        primary_factory=lambda: fake_loader_cls(LoaderType.NATIVE, available=False),
        fallback_factory=fake_loader_cls,
    )
    monkeypatch.setattr(engine_lib, "_default_manager", manager)
    return manager


class TestCatalogCommands:
    """Tests for models, device, recommend and engines."""

    @pytest.mark.unit
    def test_no_command_prints_help(self, cli, capsys):
        assert cli.main([]) == 1
        assert "usage" in capsys.readouterr().out.lower()

    @pytest.mark.unit
    def test_models(self, cli, capsys):
        assert cli.main(["models"]) == 0
        out = capsys.readouterr().out
        assert "all-minilm" in out
        assert "phi-2" in out

    @pytest.mark.unit
    def test_models_by_category(self, cli, capsys):
        assert cli.main(["models", "--category", "embedding"]) == 0
        out = capsys.readouterr().out
        assert "nomic-embed" in out
        assert "phi-3-mini" not in out

    @pytest.mark.unit
    def test_models_rejects_unknown_category(self, cli):
        with pytest.raises(SystemExit):
            cli.main(["models", "--category", "vision"])

    @pytest.mark.unit
    def test_device(self, cli, capsys, monkeypatch):
        monkeypatch.setenv("DEVICE_MEMORY_GB", "16")
        monkeypatch.setenv("DEVICE_CPU_CORES", "8")

        assert cli.main(["device"]) == 0

        out = capsys.readouterr().out
        assert "Memory: 16GB" in out
        assert "CPU Cores: 8" in out
        assert "GPU:" in out

    @pytest.mark.unit
    def test_recommend(self, cli, capsys):
        with patch.object(cli.api, "recommend_model", return_value=get_model("all-mpnet")):
            assert cli.main(["recommend"]) == 0
        assert "all-mpnet" in capsys.readouterr().out

    @pytest.mark.unit
    def test_recommend_nothing_compatible(self, cli):
        with patch.object(cli.api, "recommend_model", return_value=None):
            assert cli.main(["recommend", "-c", "generative"]) == 1

    @pytest.mark.unit
    def test_engines(self, cli, capsys, fake_engine):
        assert cli.main(["engines"]) == 0
        out = capsys.readouterr().out
        assert "onnx" in out
        assert "unavailable" in out
        assert "sentence-transformers" in out


class TestDownloadCommand:
    """Tests for the download command."""

    @pytest.mark.unit
    def test_download(self, cli, tmp_path):
        with patch("embedcore.loaders.models.ModelManager.download") as download:
            download.return_value = tmp_path / "model"
            assert cli.main(["download", "all-minilm", "--force"]) == 0
        download.assert_called_once_with("all-minilm", force=True)

    @pytest.mark.unit
    def test_download_unknown_model(self, cli):
        assert cli.main(["download", "no-such-model"]) == 1


class TestEmbedCommand:
    """Tests for the embed command."""

    @pytest.mark.unit
    def test_embed_prints_vector(self, cli, capsys, fake_engine):
        assert cli.main(["embed", "login form"]) == 0

        vector = json.loads(capsys.readouterr().out)
        assert len(vector) == 384
        assert fake_engine.current_model is None

    @pytest.mark.unit
    def test_embed_with_model(self, cli, capsys, fake_engine):
        assert cli.main(["embed", "login form", "--model", "all-mpnet"]) == 0
        assert len(json.loads(capsys.readouterr().out)) == 768

    @pytest.mark.unit
    def test_embed_unknown_strategy(self, cli, fake_engine):
        assert cli.main(["embed", "login form", "--strategy", "fastest"]) == 1

    @pytest.mark.unit
    def test_embed_engine_failure(self, cli, fake_loader_cls, monkeypatch):
        manager = EmbeddingEngineManager(
            primary_factory=lambda: fake_loader_cls(available=False),
            fallback_factory=lambda: fake_loader_cls(fail_with=LoadError("no weights")),
        )
        monkeypatch.setattr(engine_lib, "_default_manager", manager)

        assert cli.main(["embed", "login form"]) == 1


class TestSearchCommand:
    """Tests for the search command."""

    @pytest.fixture
    def data_file(self, tmp_path) -> Path:
        path = tmp_path / "docs.jsonl"
        lines = [
            {"id": "login", "text": "login form with email and password"},
            {"id": "chart", "text": "dashboard with revenue charts", "metadata": {"page": 2}},
        ]
        path.write_text("\n".join(json.dumps(line) for line in lines) + "\n\n")
        return path

    @pytest.mark.unit
    def test_search(self, cli, capsys, fake_engine, data_file):
        code = cli.main(
            ["search", "login form with email and password", "--data", str(data_file)]
        )

        assert code == 0
        out = capsys.readouterr().out
        assert "1. [score=1.0000] login" in out
        assert "chart" not in out

    @pytest.mark.unit
    def test_search_no_matches(self, cli, capsys, fake_engine, data_file):
        code = cli.main(
            ["search", "something else", "--data", str(data_file), "--min-similarity", "0.99"]
        )
        assert code == 0
        assert "No matches." in capsys.readouterr().out

    @pytest.mark.unit
    def test_search_invalid_limit(self, cli, fake_engine, data_file):
        assert cli.main(["search", "login", "--data", str(data_file), "-k", "0"]) == 1

    @pytest.mark.unit
    def test_search_missing_file(self, cli, tmp_path):
        assert cli.main(["search", "login", "--data", str(tmp_path / "none.jsonl")]) == 1

    @pytest.mark.unit
    def test_search_malformed_file(self, cli, tmp_path):
        path = tmp_path / "bad.jsonl"
        path.write_text('{"id": "a"}\n')
        assert cli.main(["search", "login", "--data", str(path)]) == 1

    @pytest.mark.unit
    def test_search_accepts_numeric_ids(self, cli, capsys, fake_engine, tmp_path):
        path = tmp_path / "numeric.jsonl"
        path.write_text('{"id": 7, "text": "login form"}\n')

        assert cli.main(["search", "login form", "--data", str(path)]) == 0
        assert "] 7: login form" in capsys.readouterr().out
