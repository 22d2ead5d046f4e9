"""CLI command tests."""

import pytest

from hibiscus.cli import generate
from hibiscus.core.config import Settings
from hibiscus.services.generation.outcomes import OutcomeKind
from tests.conftest import PNG_BYTES, StubDispatcher


@pytest.fixture
def cli_env(monkeypatch, tmp_path):
    monkeypatch.setenv("APP_ENV", "test")
    monkeypatch.setenv("DOWNLOAD_DIR", str(tmp_path / "downloads"))
    monkeypatch.chdir(tmp_path)
    return tmp_path


@pytest.fixture
def use_client(monkeypatch, make_client):
    """Route the CLI's client construction to a stub-backed client."""

    def _use(dispatcher):
        client = make_client(dispatcher)
        monkeypatch.setattr(
            generate.GenerationClient, "from_settings", classmethod(lambda cls, s: client)
        )
        return client

    return _use


def test_build_params_applies_overrides():
    args = generate.parse_args(
        [
            "make it night",
            "--kind",
            "img2img",
            "--image",
            "https://x/1.png",
            "--image",
            "https://x/2.png",
            "--width",
            "512",
            "--seed",
            "9",
        ]
    )

    params = generate.build_params(args, Settings(_env_file=None))

    assert params["width"] == 512
    assert params["height"] == 1024
    assert params["seed"] == 9
    assert params["image"] == ["https://x/1.png", "https://x/2.png"]


def test_build_params_video_defaults():
    args = generate.parse_args(["waves", "--kind", "video", "--duration", "3"])

    params = generate.build_params(args, Settings(_env_file=None))

    assert params["duration"] == 3
    assert "image" not in params


@pytest.mark.asyncio
async def test_generate_writes_output_file(cli_env, use_client):
    dispatcher = StubDispatcher(OutcomeKind.CONTENT_FILTERED, OutcomeKind.SUCCESS)
    use_client(dispatcher)
    output = cli_env / "out" / "fox.png"

    exit_code = await generate.async_main(["a red fox", "-o", str(output)])

    assert exit_code == 0
    assert output.read_bytes() == PNG_BYTES
    assert len(dispatcher.calls) == 2


@pytest.mark.asyncio
async def test_generate_defaults_to_download_dir(cli_env, use_client):
    use_client(StubDispatcher(OutcomeKind.SUCCESS))

    exit_code = await generate.async_main(["a red fox"])

    assert exit_code == 0
    assert len(list((cli_env / "downloads").rglob("*.png"))) == 1


@pytest.mark.asyncio
async def test_generate_error_exit_code(cli_env, use_client, capsys):
    use_client(StubDispatcher(OutcomeKind.AUTH_FAILED))

    exit_code = await generate.async_main(["a red fox"])

    assert exit_code == 1
    assert "Invalid or missing API key." in capsys.readouterr().err


@pytest.mark.asyncio
async def test_generate_cancelled_exit_code(cli_env, use_client, monkeypatch):
    client = use_client(StubDispatcher(OutcomeKind.SUCCESS))

    async def cancelled(*args, **kwargs):
        return None

    monkeypatch.setattr(client, "generate_image", cancelled)

    assert await generate.async_main(["a red fox"]) == 130


@pytest.mark.asyncio
@pytest.mark.parametrize("argv, level", [(["-v"], "DEBUG"), ([], "INFO")])
async def test_verbose_flag_sets_debug_logging(cli_env, use_client, monkeypatch, argv, level):
    use_client(StubDispatcher(OutcomeKind.SUCCESS))
    monkeypatch.setenv("LOG_LEVEL", "INFO")
    configured = []
    monkeypatch.setattr(generate, "configure_logging", configured.append)

    assert await generate.async_main(["a red fox", *argv]) == 0

    assert [settings.log_level for settings in configured] == [level]
