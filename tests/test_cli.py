"""
Tests for the click CLI, with the HTTP client routed into the simulated backend.
"""

import httpx
import pytest
from click.testing import CliRunner

import icon_pack.cli as cli_module
from icon_pack import config as config_module
from icon_pack.cli import cli
from icon_pack.client import IconPackClient
from icon_pack.mock_server import create_app
from icon_pack.schemas import GenerationRequest


@pytest.fixture
def use_app(monkeypatch, config):
    """Point every CLI command at an in-process mock backend."""
    monkeypatch.setattr(config_module, "_config_instance", config)

    def install(**app_kwargs):
        app = create_app(**app_kwargs)

        def client_factory(base_url=None, config=None):
            return IconPackClient(
                "http://testserver", config=config, transport=httpx.ASGITransport(app=app)
            )

        monkeypatch.setattr(cli_module, "IconPackClient", client_factory)
        return app

    return install


def test_info(use_app):
    use_app()
    result = CliRunner().invoke(cli, ["info"])

    assert result.exit_code == 0, result.output
    assert "Flux-Pro" in result.output
    assert "Luma Photon" in result.output


def test_generate_saves_icons_and_exports(use_app, tmp_path):
    use_app(enabled_services={"flux": True, "recraft": True}, failing_services={"recraft"})
    out = tmp_path / "out"

    result = CliRunner().invoke(cli, [
        "generate", "garden tools",
        "-n", "4",
        "-o", str(out),
        "--export", "flux",
        "--more", "flux", "--hint", "rake",
    ])

    assert result.exit_code == 0, result.output
    assert "Generation complete" in result.output
    assert "Recraft V3" in result.output

    session_dirs = list(out.iterdir())
    assert len(session_dirs) == 1
    icons = sorted(p.name for p in (session_dirs[0] / "icons").iterdir())
    assert "flux-gen1-01.png" in icons
    assert "flux-more-01.png" in icons
    assert len(icons) == 4 + 9
    exports = list((session_dirs[0] / "exports").glob("icon-pack-*-flux-gen1.zip"))
    assert len(exports) == 1


def test_generate_requires_theme_or_image(use_app):
    use_app()
    result = CliRunner().invoke(cli, ["generate"])

    assert result.exit_code == 1
    assert "✗ Error" in result.output


def test_generate_rejects_unknown_provider(use_app):
    use_app()
    result = CliRunner().invoke(cli, ["generate", "x", "--export", "dalle"])

    assert result.exit_code == 1
    assert "unknown provider 'dalle'" in result.output


def test_generate_reports_generation_error(use_app, tmp_path):
    use_app(enabled_services={"gpt": True}, failing_services={"gpt"})
    result = CliRunner().invoke(cli, ["generate", "x", "--no-save"])

    assert result.exit_code == 1
    assert "All providers failed" in result.output


def test_export_command(use_app, tmp_path):
    app = use_app(enabled_services={"flux": True})
    entry = app.state.backend.submit(GenerationRequest(general_description="x"))

    result = CliRunner().invoke(cli, ["export", entry.request_id, "flux", "-o", str(tmp_path)])

    assert result.exit_code == 0, result.output
    assert (tmp_path / entry.request_id / "exports" / f"icon-pack-{entry.request_id}-flux-gen1.zip").exists()


def test_export_command_failure(use_app, tmp_path):
    use_app()
    result = CliRunner().invoke(cli, ["export", "missing", "flux", "-o", str(tmp_path)])

    assert result.exit_code == 1
    assert "Export failed" in result.output


def test_status_not_found(use_app):
    use_app()
    result = CliRunner().invoke(cli, ["status", "missing"])

    assert result.exit_code == 1
    assert "not_found" in result.output


def test_feedback_and_unsubscribe(use_app):
    app = use_app()
    runner = CliRunner()

    feedback = runner.invoke(cli, ["feedback", "More pastel please"])
    unsubscribe = runner.invoke(cli, ["unsubscribe", "tok-1"])

    assert feedback.exit_code == 0, feedback.output
    assert app.state.backend.feedback == ["More pastel please"]
    assert unsubscribe.exit_code == 0
    assert "unsubscribed" in unsubscribe.output
